"""
Model: PriceSnapshot
Append-only price history. A row holds the price a record had right before it changed.
"""

from allsales.db import db, now_utc
from allsales.utils import ensure_utc, isoformat


class PriceSnapshot(db.Model):
    __tablename__ = "price_snapshots"

    id = db.Column(db.Integer, primary_key=True)
    external_id = db.Column(
        db.Integer, db.ForeignKey("catalog_records.external_id", ondelete="CASCADE"), nullable=False, index=True
    )

    currency = db.Column(db.String(8))
    initial = db.Column(db.Float)
    final = db.Column(db.Float)
    discount_percent = db.Column(db.Integer, default=0)
    initial_formatted = db.Column(db.String(32))
    final_formatted = db.Column(db.String(32))
    last_checked = db.Column(db.DateTime(timezone=True))

    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, default=now_utc)

    @classmethod
    def from_price(cls, external_id, price):
        """Build a snapshot from a current_price dict"""
        return cls(
            external_id=external_id,
            currency=price.get("currency"),
            initial=price.get("initial"),
            final=price.get("final"),
            discount_percent=price.get("discount_percent") or 0,
            initial_formatted=price.get("initial_formatted") or "",
            final_formatted=price.get("final_formatted") or "",
            last_checked=ensure_utc(price.get("last_checked")),
        )

    def to_dict(self):
        return {
            "currency": self.currency,
            "initial": self.initial,
            "final": self.final,
            "discount_percent": self.discount_percent or 0,
            "initial_formatted": self.initial_formatted or "",
            "final_formatted": self.final_formatted or "",
            "last_checked": isoformat(self.last_checked),
            "recorded_at": isoformat(self.recorded_at),
        }
