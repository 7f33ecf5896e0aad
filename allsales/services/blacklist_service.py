"""
Blacklist tracking: appids the store keeps answering "no data" for.
"""
import structlog

from allsales import metrics
from allsales.constants import BLACKLIST_DEFAULT_REASON
from allsales.repositories.blacklist_repository import BlacklistRepository

logger = structlog.get_logger("blacklist")


class BlacklistService:

    def is_blacklisted(self, external_id):
        return BlacklistRepository.exists(external_id)

    def blacklisted_ids(self):
        return BlacklistRepository.distinct_external_ids()

    def record(self, external_id, name, reason=BLACKLIST_DEFAULT_REASON, phase="sync"):
        """Blacklist an appid. Repeated calls bump attempt_count instead of duplicating."""
        BlacklistRepository.upsert(external_id, name, reason)
        metrics.records_blacklisted_total.labels(phase=phase).inc()
        logger.info("app_blacklisted", external_id=external_id, name=name, reason=reason)

    def move_to_blacklist(self, external_id, name, reason=BLACKLIST_DEFAULT_REASON):
        """Drop a stored record whose details vanished and blacklist it in the same transaction"""
        BlacklistRepository.move_record_to_blacklist(external_id, name, reason)
        metrics.records_blacklisted_total.labels(phase="refresh").inc()
        logger.info("stored_app_moved_to_blacklist", external_id=external_id, name=name, reason=reason)

    def remove(self, external_id):
        removed = BlacklistRepository.delete(external_id)
        if removed:
            logger.info("app_removed_from_blacklist", external_id=external_id)
        return removed

    def count(self):
        return BlacklistRepository.count()

    def list_entries(self, page, page_size):
        entries, total = BlacklistRepository.get_paged(page, page_size)
        return [entry.to_dict() for entry in entries], total
