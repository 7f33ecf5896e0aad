"""
Repository for BlacklistEntry database operations
"""
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from allsales.constants import BLACKLIST_DEFAULT_REASON
from allsales.db import db, dialect_insert, now_utc
from allsales.models.blacklistentry import BlacklistEntry
from allsales.models.catalogrecord import CatalogRecord
from allsales.models.pricesnapshot import PriceSnapshot


def _upsert_statement(external_id, name, reason):
    table = BlacklistEntry.__table__
    now = now_utc()
    stmt = dialect_insert(table).values(
        external_id=external_id,
        name=name or "",
        reason=reason,
        attempt_count=1,
        last_attempt=now,
        created_at=now,
    )
    return stmt.on_conflict_do_update(
        index_elements=[table.c.external_id],
        set_={
            "attempt_count": table.c.attempt_count + 1,
            "last_attempt": now,
            "reason": reason,
        },
    )


class BlacklistRepository:
    """Repository for BlacklistEntry database operations"""

    @staticmethod
    def get_by_external_id(external_id):
        return BlacklistEntry.query.filter_by(external_id=external_id).first()

    @staticmethod
    def exists(external_id):
        """Check if an appid is blacklisted"""
        return db.session.scalar(
            select(BlacklistEntry.id).where(BlacklistEntry.external_id == external_id).limit(1)
        ) is not None

    @staticmethod
    def distinct_external_ids():
        return set(db.session.scalars(select(BlacklistEntry.external_id)))

    @staticmethod
    def upsert(external_id, name, reason=BLACKLIST_DEFAULT_REASON):
        """Create the entry, or bump attempt_count and last_attempt when it already exists"""
        try:
            db.session.execute(_upsert_statement(external_id, name, reason))
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def move_record_to_blacklist(external_id, name, reason=BLACKLIST_DEFAULT_REASON):
        """Delete a stored record with its price history and blacklist its appid, atomically"""
        try:
            db.session.execute(delete(PriceSnapshot).where(PriceSnapshot.external_id == external_id))
            db.session.execute(delete(CatalogRecord).where(CatalogRecord.external_id == external_id))
            db.session.execute(_upsert_statement(external_id, name, reason))
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def delete(external_id):
        """Delete BlacklistEntry, so the appid is fetched again by the next sync"""
        try:
            result = db.session.execute(delete(BlacklistEntry).where(BlacklistEntry.external_id == external_id))
            db.session.commit()
            return result.rowcount > 0
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def count():
        """Count total BlacklistEntry records"""
        return BlacklistEntry.query.count()

    @staticmethod
    def get_paged(page, page_size):
        """Most recently attempted first"""
        query = BlacklistEntry.query.order_by(BlacklistEntry.last_attempt.desc(), BlacklistEntry.external_id.asc())
        total = query.count()
        items = query.offset((page - 1) * page_size).limit(page_size).all()
        return items, total
