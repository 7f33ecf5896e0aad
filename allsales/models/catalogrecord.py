"""
Model: CatalogRecord
One row per Steam app with usable store details.
"""

from allsales.constants import CLASSIFICATION_UNKNOWN, CURRENT_SCHEMA_VERSION
from allsales.db import db, now_utc
from allsales.utils import isoformat

EMPTY_CRITIC_SCORE = {"score": None, "url": None}
EMPTY_COMMUNITY_RATING = {"total": 0}
EMPTY_PLATFORMS = {"windows": False, "mac": False, "linux": False}


class CatalogRecord(db.Model):
    __tablename__ = "catalog_records"

    id = db.Column(db.Integer, primary_key=True)
    external_id = db.Column(db.Integer, unique=True, nullable=False, index=True)  # Steam appid
    name = db.Column(db.String, nullable=False, index=True)

    classification = db.Column(db.String(20), nullable=False, default=CLASSIFICATION_UNKNOWN, index=True)
    is_primary_classification = db.Column(db.Boolean, nullable=False, default=False, index=True)
    is_free = db.Column(db.Boolean, nullable=False, default=False, index=True)
    minimum_age = db.Column(db.Integer, default=0)

    developers = db.Column(db.JSON, default=list)  # ["Valve"]
    publishers = db.Column(db.JSON, default=list)
    genres = db.Column(db.JSON, default=list)  # ["Action", "Indie"]
    package_ids = db.Column(db.JSON, default=list)
    dlc_ids = db.Column(db.JSON, default=list)
    platforms = db.Column(db.JSON)  # {"windows": true, "mac": false, "linux": false}

    header_image_url = db.Column(db.String(512))
    website_url = db.Column(db.String(512))

    critic_score = db.Column(db.JSON)  # {"score": 90, "url": "..."}
    community_rating = db.Column(db.JSON)  # {"total": 1234}
    current_price = db.Column(db.JSON)  # null for free apps or apps without a price

    # Denormalized from current_price for filtering and indexes
    discount_percent = db.Column(db.Integer, index=True)
    final_price = db.Column(db.Float, index=True)

    schema_version = db.Column(db.Integer, nullable=False, default=CURRENT_SCHEMA_VERSION)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=now_utc)
    last_updated = db.Column(db.DateTime(timezone=True), nullable=False, default=now_utc, index=True)

    price_history = db.relationship(
        "PriceSnapshot",
        order_by="PriceSnapshot.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    __table_args__ = (
        db.Index("idx_catalog_type_primary", "classification", "is_primary_classification"),
        db.Index("idx_catalog_free_discount", "is_free", "discount_percent"),
    )

    def to_dict(self, include_history=True):
        """Public shape of a record. Missing nested values read back as their zero form."""
        data = {
            "external_id": self.external_id,
            "name": self.name,
            "classification": self.classification or CLASSIFICATION_UNKNOWN,
            "is_primary_classification": bool(self.is_primary_classification),
            "is_free": bool(self.is_free),
            "minimum_age": self.minimum_age or 0,
            "developers": list(self.developers or []),
            "publishers": list(self.publishers or []),
            "genres": list(self.genres or []),
            "package_ids": list(self.package_ids or []),
            "dlc_ids": list(self.dlc_ids or []),
            "platforms": {**EMPTY_PLATFORMS, **(self.platforms or {})},
            "header_image_url": self.header_image_url or "",
            "website_url": self.website_url or "",
            "critic_score": {**EMPTY_CRITIC_SCORE, **(self.critic_score or {})},
            "community_rating": {**EMPTY_COMMUNITY_RATING, **(self.community_rating or {})},
            "current_price": dict(self.current_price) if self.current_price else None,
            "created_at": isoformat(self.created_at),
            "last_updated": isoformat(self.last_updated),
        }
        if include_history:
            data["price_history"] = [snapshot.to_dict() for snapshot in self.price_history]
        return data

    def __repr__(self):
        return f"<CatalogRecord {self.external_id} {self.name!r}>"
