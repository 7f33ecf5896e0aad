"""
Model: SyncRun
Execution log for reconciliation runs
"""

from allsales.db import db, now_utc
from allsales.utils import isoformat


class SyncRun(db.Model):
    __tablename__ = "sync_runs"

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(20), nullable=False, index=True)  # 'sync_new', 'update_all'
    trigger = db.Column(db.String(20))  # 'startup', 'schedule', 'manual', 'cli'
    status = db.Column(db.String(20), nullable=False, default="running")  # 'running', 'completed', 'failed'

    started_at = db.Column(db.DateTime(timezone=True), nullable=False, default=now_utc)
    completed_at = db.Column(db.DateTime(timezone=True))

    processed = db.Column(db.Integer, default=0)
    added = db.Column(db.Integer, default=0)
    updated = db.Column(db.Integer, default=0)
    blacklisted = db.Column(db.Integer, default=0)
    failed = db.Column(db.Integer, default=0)

    error_message = db.Column(db.Text)

    def to_dict(self):
        return {
            "id": self.id,
            "kind": self.kind,
            "trigger": self.trigger,
            "status": self.status,
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
            "processed": self.processed or 0,
            "added": self.added or 0,
            "updated": self.updated or 0,
            "blacklisted": self.blacklisted or 0,
            "failed": self.failed or 0,
            "error_message": self.error_message,
        }
