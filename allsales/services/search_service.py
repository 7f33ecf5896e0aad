"""
Read side of the catalog: filtered search, facet values and statistics.
"""
import math
from dataclasses import dataclass
from typing import Optional

from allsales import redis_cache
from allsales.constants import MAX_PAGE_NUMBER
from allsales.repositories.blacklist_repository import BlacklistRepository
from allsales.repositories.catalog_repository import CatalogRepository
from allsales.repositories.syncrun_repository import SyncRunRepository
from allsales.utils import isoformat, parse_bool, parse_int

# Query-string aliases accepted next to the snake_case names
FILTER_ALIASES = {
    "startsWith": "starts_with",
    "isFree": "is_free",
    "discountPercent": "discount_percent",
    "minDiscount": "min_discount",
    "maxDiscount": "max_discount",
    "includeAllTypes": "include_all_types",
}


@dataclass
class SearchFilters:
    genre: Optional[str] = None
    publisher: Optional[str] = None
    developer: Optional[str] = None
    starts_with: Optional[str] = None
    is_free: Optional[bool] = None
    discount_percent: Optional[int] = None
    min_discount: Optional[int] = None
    max_discount: Optional[int] = None
    include_all_types: bool = False

    @property
    def has_discount_filter(self):
        return any(value is not None for value in (self.discount_percent, self.min_discount, self.max_discount))

    @classmethod
    def from_mapping(cls, params):
        """Build filters from query-string style input. Unparseable values are ignored."""
        params = {FILTER_ALIASES.get(key, key): value for key, value in (params or {}).items()}

        def text(key):
            value = params.get(key)
            if value is None:
                return None
            value = str(value).strip()
            return value or None

        return cls(
            genre=text("genre"),
            publisher=text("publisher"),
            developer=text("developer"),
            starts_with=text("starts_with"),
            is_free=parse_bool(params.get("is_free")),
            discount_percent=parse_int(params.get("discount_percent")),
            min_discount=parse_int(params.get("min_discount")),
            max_discount=parse_int(params.get("max_discount")),
            include_all_types=bool(parse_bool(params.get("include_all_types"), False)),
        )


class SearchService:

    def __init__(self, default_page=1, default_page_size=25, max_page_size=50, client=None):
        self.default_page = default_page
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.client = client

    @classmethod
    def from_settings(cls, settings, client=None):
        pagination = settings["pagination"]
        return cls(
            default_page=pagination["default_page"],
            default_page_size=pagination["default_page_size"],
            max_page_size=pagination["max_page_size"],
            client=client,
        )

    def resolve_page(self, page=None, page_size=None):
        """Lenient paging: missing, non-numeric or out-of-range input falls back to the defaults"""
        page = parse_int(page, self.default_page)
        if page < 1 or page > MAX_PAGE_NUMBER:
            page = self.default_page
        page_size = parse_int(page_size, self.default_page_size)
        if page_size < 1:
            page_size = self.default_page_size
        return page, min(page_size, self.max_page_size)

    @staticmethod
    def pagination(page, page_size, total):
        return {
            "page": page,
            "page_size": page_size,
            "total": total,
            "total_pages": math.ceil(total / page_size) if total else 0,
        }

    def search(self, filters=None, page=None, page_size=None):
        """
        Filtered, paginated records ordered by name.

        Records classified "unknown" are never returned.

        Args:
            filters: SearchFilters or a query-string style mapping
        """
        if not isinstance(filters, SearchFilters):
            filters = SearchFilters.from_mapping(filters)
        page, page_size = self.resolve_page(page, page_size)

        records, total = CatalogRepository.search(filters, page, page_size)
        return {
            "items": [record.to_dict(include_history=False) for record in records],
            "pagination": self.pagination(page, page_size, total),
        }

    def get_unique_genres(self):
        return CatalogRepository.distinct_list_values("genres")

    def get_unique_publishers(self):
        return CatalogRepository.distinct_list_values("publishers")

    def get_unique_developers(self):
        return CatalogRepository.distinct_list_values("developers")

    def get_filter_options(self):
        return {
            "genres": self.get_unique_genres(),
            "publishers": self.get_unique_publishers(),
            "developers": self.get_unique_developers(),
        }

    def get_record(self, external_id):
        record = CatalogRepository.get_by_external_id(external_id)
        return record.to_dict() if record else None

    def list_stored(self, page=None, page_size=None, classification=None, with_type=None):
        """Every stored record, unknown classifications included"""
        page, page_size = self.resolve_page(page, page_size)
        records, total = CatalogRepository.list_stored(
            page, page_size, classification=classification, with_type=parse_bool(with_type)
        )
        return {
            "items": [record.to_dict(include_history=False) for record in records],
            "pagination": self.pagination(page, page_size, total),
        }

    def get_stats(self):
        counts = CatalogRepository.get_counts()
        last_run = SyncRunRepository.get_last()
        stats = {
            "total_records": counts["total"],
            "primary_records": counts["primary"],
            "free_records": counts["free"],
            "discounted_records": counts["discounted"],
            "by_classification": CatalogRepository.count_by_classification(),
            "blacklisted": BlacklistRepository.count(),
            "last_updated": isoformat(CatalogRepository.get_last_updated()),
            "last_run": last_run.to_dict() if last_run else None,
            "cache": redis_cache.get_cache_info(),
        }
        if self.client is not None:
            stats["throttle"] = self.client.throttle_state()
        return stats
