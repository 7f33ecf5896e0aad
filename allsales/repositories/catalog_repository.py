"""
Repository for CatalogRecord database operations
"""
import json

from sqlalchemy import and_, cast, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from allsales.constants import CLASSIFICATION_UNKNOWN
from allsales.db import db, now_utc
from allsales.models.catalogrecord import CatalogRecord
from allsales.models.pricesnapshot import PriceSnapshot
from allsales.normalizer import price_changed

LIST_COLUMNS = {
    "genres": CatalogRecord.genres,
    "publishers": CatalogRecord.publishers,
    "developers": CatalogRecord.developers,
}


def _json_list_contains(column, value):
    # Matches one whole element of a JSON string list, e.g. '"Action"' inside '["Action", "Indie"]'
    return cast(column, db.Text).contains(json.dumps(value), autoescape=True)


class CatalogRepository:
    """Repository for CatalogRecord database operations"""

    @staticmethod
    def get_by_external_id(external_id):
        """Get CatalogRecord by Steam appid"""
        return CatalogRecord.query.filter_by(external_id=external_id).first()

    @staticmethod
    def distinct_external_ids():
        """Every stored appid"""
        return set(db.session.scalars(select(CatalogRecord.external_id)))

    @staticmethod
    def get_id_name_pairs():
        """{appid: name} for every stored record"""
        rows = db.session.execute(select(CatalogRecord.external_id, CatalogRecord.name))
        return {external_id: name for external_id, name in rows}

    @staticmethod
    def count():
        """Count total CatalogRecord rows"""
        return CatalogRecord.query.count()

    @staticmethod
    def count_by_classification():
        rows = db.session.execute(
            select(CatalogRecord.classification, func.count(CatalogRecord.id)).group_by(CatalogRecord.classification)
        )
        return {classification: count for classification, count in rows}

    @staticmethod
    def get_counts():
        """Headline counters used by the stats endpoint"""
        return {
            "total": CatalogRecord.query.count(),
            "primary": CatalogRecord.query.filter(CatalogRecord.is_primary_classification.is_(True)).count(),
            "free": CatalogRecord.query.filter(CatalogRecord.is_free.is_(True)).count(),
            "discounted": CatalogRecord.query.filter(CatalogRecord.discount_percent > 0).count(),
        }

    @staticmethod
    def get_last_updated():
        return db.session.scalar(select(func.max(CatalogRecord.last_updated)))

    @staticmethod
    def create(price_history=None, **fields):
        """
        Insert a new CatalogRecord, optionally with an imported price history.

        Raises:
            IntegrityError: the appid is already stored (session rolled back)
        """
        try:
            now = now_utc()
            fields.setdefault("created_at", now)
            fields.setdefault("last_updated", now)
            record = CatalogRecord(**fields)
            for price in price_history or []:
                record.price_history.append(PriceSnapshot.from_price(record.external_id, price))
            db.session.add(record)
            db.session.commit()
            return record
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def get_refresh_batch(cutoff, cursor=None, limit=100):
        """
        Next page of the refresh sweep, oldest first.

        Only rows last updated before `cutoff` are returned, and `cursor` is the
        (last_updated, external_id) of the final row of the previous page. Rows come
        back as plain dicts so they can be handed to worker threads.
        """
        query = select(
            CatalogRecord.external_id,
            CatalogRecord.name,
            CatalogRecord.current_price,
            CatalogRecord.last_updated,
        ).where(CatalogRecord.last_updated < cutoff)

        if cursor is not None:
            last_updated, external_id = cursor
            query = query.where(
                or_(
                    CatalogRecord.last_updated > last_updated,
                    and_(CatalogRecord.last_updated == last_updated, CatalogRecord.external_id > external_id),
                )
            )

        query = query.order_by(CatalogRecord.last_updated.asc(), CatalogRecord.external_id.asc()).limit(limit)
        return [
            {
                "external_id": row.external_id,
                "name": row.name,
                "current_price": row.current_price,
                "last_updated": row.last_updated,
            }
            for row in db.session.execute(query)
        ]

    @staticmethod
    def apply_refresh(external_id, fields, previous_price):
        """
        Overwrite a record with freshly normalized fields in one transaction.
        When the price moved, the previous price is appended to the history.

        Returns:
            True when the price changed, False when it did not, None when the
            record no longer exists
        """
        values = {key: value for key, value in fields.items() if key != "external_id"}
        values["last_updated"] = now_utc()
        changed = price_changed(previous_price, fields.get("current_price"))
        try:
            result = db.session.execute(
                update(CatalogRecord).where(CatalogRecord.external_id == external_id).values(**values)
            )
            if result.rowcount == 0:
                db.session.rollback()
                return None
            if changed and previous_price:
                db.session.add(PriceSnapshot.from_price(external_id, previous_price))
            db.session.commit()
            return changed
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def search_conditions(filters):
        conditions = [CatalogRecord.classification != CLASSIFICATION_UNKNOWN]

        if not filters.include_all_types:
            conditions.append(CatalogRecord.is_primary_classification.is_(True))
        if filters.genre:
            conditions.append(_json_list_contains(CatalogRecord.genres, filters.genre))
        if filters.publisher:
            conditions.append(_json_list_contains(CatalogRecord.publishers, filters.publisher))
        if filters.developer:
            conditions.append(_json_list_contains(CatalogRecord.developers, filters.developer))
        if filters.starts_with:
            conditions.append(CatalogRecord.name.istartswith(filters.starts_with, autoescape=True))

        is_free = filters.is_free
        if filters.has_discount_filter:
            is_free = False
            if filters.discount_percent is not None:
                conditions.append(CatalogRecord.discount_percent == filters.discount_percent)
            if filters.min_discount is not None:
                conditions.append(CatalogRecord.discount_percent >= filters.min_discount)
            if filters.max_discount is not None:
                conditions.append(CatalogRecord.discount_percent <= filters.max_discount)
        if is_free is not None:
            conditions.append(CatalogRecord.is_free.is_(is_free))

        return conditions

    @staticmethod
    def search(filters, page, page_size):
        """One page of records matching `filters`, ordered by name"""
        query = CatalogRecord.query.filter(*CatalogRepository.search_conditions(filters))
        total = query.count()
        items = (
            query.order_by(func.lower(CatalogRecord.name).asc(), CatalogRecord.external_id.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return items, total

    @staticmethod
    def distinct_list_values(field):
        """Sorted distinct non-empty values of a JSON list column"""
        column = LIST_COLUMNS[field]
        values = set()
        for row_values in db.session.scalars(select(column).where(column.isnot(None))):
            for value in row_values or []:
                if isinstance(value, str) and value.strip():
                    values.add(value)
        return sorted(values)

    @staticmethod
    def list_stored(page, page_size, classification=None, with_type=None):
        """Raw listing of stored records, including unknown classifications"""
        query = CatalogRecord.query
        if classification:
            query = query.filter(CatalogRecord.classification == classification)
        if with_type is True:
            query = query.filter(CatalogRecord.classification != CLASSIFICATION_UNKNOWN)
        elif with_type is False:
            query = query.filter(CatalogRecord.classification == CLASSIFICATION_UNKNOWN)

        total = query.count()
        items = query.order_by(CatalogRecord.external_id.asc()).offset((page - 1) * page_size).limit(page_size).all()
        return items, total

    @staticmethod
    def get_outdated(schema_version, limit=500, after_id=0):
        """Records still stored in an older shape"""
        return (
            CatalogRecord.query.filter(
                CatalogRecord.schema_version < schema_version, CatalogRecord.external_id > after_id
            )
            .order_by(CatalogRecord.external_id.asc())
            .limit(limit)
            .all()
        )
