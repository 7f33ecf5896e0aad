"""
Model: BlacklistEntry
Apps the store keeps answering "no data" for. Never fetched again until removed.
"""

from allsales.constants import BLACKLIST_DEFAULT_REASON
from allsales.db import db, now_utc
from allsales.utils import isoformat


class BlacklistEntry(db.Model):
    __tablename__ = "blacklist_entries"

    id = db.Column(db.Integer, primary_key=True)
    external_id = db.Column(db.Integer, unique=True, nullable=False, index=True)
    name = db.Column(db.String, nullable=False, default="")
    reason = db.Column(db.String(255), nullable=False, default=BLACKLIST_DEFAULT_REASON)
    attempt_count = db.Column(db.Integer, nullable=False, default=1, index=True)
    last_attempt = db.Column(db.DateTime(timezone=True), nullable=False, default=now_utc, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=now_utc)

    def to_dict(self):
        return {
            "external_id": self.external_id,
            "name": self.name,
            "reason": self.reason,
            "attempt_count": self.attempt_count,
            "last_attempt": isoformat(self.last_attempt),
            "created_at": isoformat(self.created_at),
        }
