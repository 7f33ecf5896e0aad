"""
Repository for SyncRun database operations
"""
from sqlalchemy.exc import SQLAlchemyError

from allsales.db import db, now_utc
from allsales.models.syncrun import SyncRun


class SyncRunRepository:
    """Repository for SyncRun database operations"""

    @staticmethod
    def start(kind, trigger):
        """Create a running SyncRun"""
        try:
            run = SyncRun(kind=kind, trigger=trigger, status="running", started_at=now_utc())
            db.session.add(run)
            db.session.commit()
            db.session.refresh(run)
            return run
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def _finish(id, status, counts=None, error_message=None):
        run = db.session.get(SyncRun, id)
        if not run:
            return None
        try:
            run.status = status
            run.completed_at = now_utc()
            for key, value in (counts or {}).items():
                if hasattr(run, key) and isinstance(value, int):
                    setattr(run, key, value)
            run.error_message = error_message
            db.session.commit()
            return run
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def complete(id, counts):
        return SyncRunRepository._finish(id, "completed", counts)

    @staticmethod
    def fail(id, error_message):
        return SyncRunRepository._finish(id, "failed", error_message=str(error_message)[:2000])

    @staticmethod
    def get_last(kind=None):
        """Most recent run, optionally of one kind"""
        query = SyncRun.query
        if kind:
            query = query.filter_by(kind=kind)
        return query.order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).first()
