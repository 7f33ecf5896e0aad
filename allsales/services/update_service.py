"""
Catalog reconciliation: brings the stored records in line with Steam.

sync_new_games() stores apps that appeared in the app list since the last run,
update_all_games() does that first and then refreshes every stored record,
oldest first. Per-app failures are logged and counted, they never abort a run.
A failure to fetch the app list itself aborts the run and propagates.
"""
import enum
import threading
import time
from contextlib import contextmanager

import structlog
from sqlalchemy.exc import IntegrityError

from allsales import metrics
from allsales.concurrency import process_with_concurrency
from allsales.constants import RUN_KIND_SYNC_NEW, RUN_KIND_UPDATE_ALL
from allsales.db import db, now_utc
from allsales.exceptions import RunInProgressError
from allsales.normalizer import normalize
from allsales.repositories.catalog_repository import CatalogRepository
from allsales.repositories.syncrun_repository import SyncRunRepository
from allsales.steam_client import DetailStatus

logger = structlog.get_logger("update")


class ItemOutcome(enum.Enum):
    ADDED = "added"
    EXISTS = "exists"
    UPDATED = "updated"
    PRICE_CHANGED = "price_changed"
    BLACKLISTED = "blacklisted"
    SKIPPED = "skipped"
    FAILED = "failed"


class RunGuard:
    """Lets one guarded run execute at a time; the others are refused, not queued"""

    def __init__(self):
        self._lock = threading.Lock()
        self._running = None

    @property
    def running(self):
        return self._running

    @contextmanager
    def hold(self, kind):
        with self._lock:
            if self._running:
                raise RunInProgressError(f"A {self._running} run is already in progress")
            self._running = kind
        try:
            yield
        finally:
            with self._lock:
                self._running = None


def _count(results, *outcomes):
    return sum(1 for result in results if result in outcomes)


class UpdateService:

    def __init__(self, app, client, blacklist, concurrency_limit=5, batch_size=100):
        self.app = app
        self.client = client
        self.blacklist = blacklist
        self.concurrency_limit = concurrency_limit
        self.batch_size = batch_size
        self.guard = RunGuard()

    def _with_app_context(self, fn):
        # Worker threads need their own app context, and so their own session
        def run(item):
            with self.app.app_context():
                return fn(item)
        return run

    def _tracked(self, kind, trigger, fn):
        run_id = SyncRunRepository.start(kind, trigger).id
        started = time.monotonic()
        logger.info("run_started", kind=kind, trigger=trigger, run_id=run_id)
        metrics.ACTIVE_RUNS.labels(kind=kind).inc()
        try:
            result = fn()
        except Exception as e:
            db.session.rollback()
            SyncRunRepository.fail(run_id, e)
            metrics.run_duration_seconds.labels(kind=kind, status="failed").observe(time.monotonic() - started)
            logger.error("run_failed", kind=kind, run_id=run_id, error=str(e))
            raise
        finally:
            metrics.ACTIVE_RUNS.labels(kind=kind).dec()

        counts = dict(result)
        if "sync" in counts:
            counts["added"] = counts.pop("sync").get("added", 0)
        SyncRunRepository.complete(run_id, counts)
        duration = time.monotonic() - started
        metrics.run_duration_seconds.labels(kind=kind, status="completed").observe(duration)
        logger.info("run_completed", kind=kind, run_id=run_id, duration=round(duration, 1), **counts)
        return result

    def run_exclusive(self, kind, trigger="manual"):
        """
        Run sync_new or update_all unless a guarded run is already executing.

        Raises:
            RunInProgressError: another guarded run holds the guard
        """
        with self.guard.hold(kind):
            if kind == RUN_KIND_SYNC_NEW:
                return self.sync_new_games(trigger)
            return self.update_all_games(trigger)

    # New apps

    def sync_new_games(self, trigger="manual"):
        """
        Store every app of the Steam list that is neither stored nor blacklisted.

        Returns:
            {"processed", "added", "blacklisted", "failed"}
        """
        return self._tracked(RUN_KIND_SYNC_NEW, trigger, self._sync_new_games)

    def _sync_new_games(self):
        catalog = self.client.fetch_catalog()

        existing_ids = CatalogRepository.distinct_external_ids() | self.blacklist.blacklisted_ids()
        db.session.commit()

        new_items = []
        seen = set()
        for item in catalog:
            if item.external_id in existing_ids or item.external_id in seen:
                continue
            seen.add(item.external_id)
            new_items.append(item)
        logger.info("new_apps_found", catalog_size=len(catalog), new=len(new_items))

        results = process_with_concurrency(
            new_items, self._with_app_context(self._sync_item), self.concurrency_limit, label="app"
        )
        return {
            "processed": len(new_items),
            "added": _count(results, ItemOutcome.ADDED),
            "blacklisted": _count(results, ItemOutcome.BLACKLISTED),
            "failed": _count(results, ItemOutcome.FAILED, None),
        }

    def _sync_item(self, item):
        if self.blacklist.is_blacklisted(item.external_id):
            return ItemOutcome.SKIPPED

        result = self.client.fetch_detail(item.external_id, item.display_name)
        if result.status is DetailStatus.NOT_FOUND:
            self.blacklist.record(item.external_id, item.display_name, result.reason, phase="sync")
            return ItemOutcome.BLACKLISTED
        if result.status is DetailStatus.FAILED:
            metrics.item_failures_total.labels(phase="sync").inc()
            return ItemOutcome.FAILED

        fields = normalize(item.external_id, item.display_name, result.payload)
        try:
            CatalogRepository.create(**fields)
        except IntegrityError:
            # Stored concurrently by another run, which is the state we wanted
            logger.debug("app_already_stored", external_id=item.external_id)
            return ItemOutcome.EXISTS

        metrics.records_added_total.inc()
        logger.debug("app_added", external_id=item.external_id, name=fields["name"])
        return ItemOutcome.ADDED

    # Refresh sweep

    def update_all_games(self, trigger="manual"):
        """
        Sync new apps, then refresh every stored record once, stalest first.

        Returns:
            {"sync": {...}, "processed", "updated", "price_changes", "blacklisted", "failed"}
        """
        return self._tracked(RUN_KIND_UPDATE_ALL, trigger, lambda: self._update_all_games(trigger))

    def _update_all_games(self, trigger):
        sync = self.sync_new_games(trigger)

        # Rows refreshed during the sweep get a newer last_updated and drop out of it
        cutoff = now_utc()
        cursor = None
        totals = {"processed": 0, "updated": 0, "price_changes": 0, "blacklisted": 0, "failed": 0}
        batch_number = 0

        while True:
            batch = CatalogRepository.get_refresh_batch(cutoff, cursor, self.batch_size)
            db.session.commit()
            if not batch:
                break

            batch_number += 1
            cursor = (batch[-1]["last_updated"], batch[-1]["external_id"])
            results = process_with_concurrency(
                batch, self._with_app_context(self._refresh_item), self.concurrency_limit, label="record"
            )

            totals["processed"] += len(batch)
            totals["updated"] += _count(results, ItemOutcome.UPDATED, ItemOutcome.PRICE_CHANGED)
            totals["price_changes"] += _count(results, ItemOutcome.PRICE_CHANGED)
            totals["blacklisted"] += _count(results, ItemOutcome.BLACKLISTED)
            totals["failed"] += _count(results, ItemOutcome.FAILED, None)
            logger.info("refresh_batch_done", batch=batch_number, size=len(batch), processed=totals["processed"])

        return {"sync": sync, **totals}

    def _refresh_item(self, row):
        external_id = row["external_id"]
        if self.blacklist.is_blacklisted(external_id):
            return ItemOutcome.SKIPPED

        result = self.client.fetch_detail(external_id, row["name"])
        if result.status is DetailStatus.NOT_FOUND:
            self.blacklist.move_to_blacklist(external_id, row["name"], result.reason)
            return ItemOutcome.BLACKLISTED
        if result.status is DetailStatus.FAILED:
            metrics.item_failures_total.labels(phase="refresh").inc()
            return ItemOutcome.FAILED

        fields = normalize(external_id, row["name"], result.payload)
        changed = CatalogRepository.apply_refresh(external_id, fields, row["current_price"])
        if changed is None:
            return ItemOutcome.SKIPPED

        metrics.records_updated_total.labels(price_changed=str(changed).lower()).inc()
        if changed:
            logger.info("price_changed", external_id=external_id, old=row["current_price"], new=fields["current_price"])
            return ItemOutcome.PRICE_CHANGED
        return ItemOutcome.UPDATED

    def refresh_record(self, external_id):
        """
        Refresh one stored record right away.

        Returns:
            {"external_id", "outcome", "record"} or None when the appid is not stored
        """
        record = CatalogRepository.get_by_external_id(external_id)
        if record is None:
            return None

        row = {"external_id": record.external_id, "name": record.name, "current_price": record.current_price}
        outcome = self._refresh_item(row)
        db.session.expire_all()

        refreshed = CatalogRepository.get_by_external_id(external_id)
        return {
            "external_id": external_id,
            "outcome": outcome.value,
            "record": refreshed.to_dict() if refreshed else None,
        }

    def check_differences(self):
        """Compare the Steam app list with what is stored"""
        catalog = self.client.fetch_catalog()
        upstream = {}
        for item in catalog:
            upstream.setdefault(item.external_id, item.display_name)
        stored = CatalogRepository.get_id_name_pairs()

        missing = [
            {"external_id": external_id, "name": name}
            for external_id, name in sorted(upstream.items())
            if external_id not in stored
        ]
        extra = [
            {"external_id": external_id, "name": name}
            for external_id, name in sorted(stored.items())
            if external_id not in upstream
        ]
        return {
            "statistics": {
                "total_upstream": len(upstream),
                "total_stored": len(stored),
                "missing_in_store": len(missing),
                "extra_in_store": len(extra),
            },
            "differences": {
                "missing_in_store": missing,
                "extra_in_store": extra,
            },
        }
