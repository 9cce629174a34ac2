"""Daily cleanup: archive the live queue and reset it in one transaction.

Two interchangeable writers persist the archive. ``LegacyArchiveWriter``
stores the day inline in the restaurant's ``queue_archive`` map;
``ShardedArchiveWriter`` stores it as one or more part documents in the
archive collection. ``CleanupService`` picks the writer for a day with
``select_scheme``, so callers never need to know which one ran.

Guards (already cleaned, free plan without a manual trigger) are checked
inside the transaction, against the same snapshot that gets reset. Archiving
a day that already has an archive folds the earlier records into the new
one, so nothing archived before is lost.
"""

import logging
from datetime import date
from typing import Optional

from .clock import Clock, SystemClock
from .config import Settings, get_settings
from .errors import CleanupError, CleanupResult, TransactionConflict
from .payload import build_archive_entry, merge_entries
from .schemas import ArchiveEntry, CleanupType, Plan, Restaurant
from .scheme import StorageScheme, select_scheme
from .splitter import plan_parts
from .store import DocumentStore, StoreTransaction

logger = logging.getLogger(__name__)


class ArchiveWriter:
    scheme: StorageScheme

    def __init__(self, store: DocumentStore, clock: Optional[Clock] = None, settings: Optional[Settings] = None):
        self.store = store
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()

    def archive_and_reset(
        self,
        restaurant_id: str,
        day: date,
        cleanup_type: Optional[CleanupType] = None,
        is_manual_override: bool = False,
    ) -> CleanupResult:
        if cleanup_type is None:
            cleanup_type = CleanupType.MANUAL if is_manual_override else CleanupType.AUTO

        def apply(txn: StoreTransaction) -> CleanupResult:
            restaurant = txn.restaurant
            if restaurant is None:
                return CleanupResult.failed(CleanupError.NOT_FOUND)
            if restaurant.last_cleanup_date == day:
                return CleanupResult.failed(CleanupError.ALREADY_CLEANED)
            if restaurant.plan == Plan.FREE and not is_manual_override:
                return CleanupResult.failed(CleanupError.MANUAL_REQUIRED)

            now = self.clock.now()
            entry = build_archive_entry(restaurant.queue, day, cleanup_type, now)
            parts_written = self._persist(txn, restaurant, entry)

            restaurant.queue = []
            restaurant.last_cleanup_date = day
            restaurant.last_cleanup_at = now
            txn.update_restaurant(restaurant)
            return CleanupResult(
                success=True,
                archived_customers=len(entry.customers),
                parts_written=parts_written,
                scheme=self.scheme.value,
            )

        try:
            result = self.store.run_transaction(restaurant_id, apply)
        except TransactionConflict:
            logger.warning("Cleanup of %s for %s gave up after repeated conflicts", restaurant_id, day)
            return CleanupResult.failed(CleanupError.CONFLICT)

        if result.success:
            logger.info(
                "Archived %d customers for %s on %s (%s scheme, %d part(s), %s)",
                result.archived_customers, restaurant_id, day, result.scheme,
                result.parts_written, cleanup_type.value,
            )
        else:
            logger.info("Cleanup of %s for %s skipped: %s", restaurant_id, day, result.error.value)
        return result

    def _persist(self, txn: StoreTransaction, restaurant: Restaurant, entry: ArchiveEntry) -> int:
        raise NotImplementedError


class LegacyArchiveWriter(ArchiveWriter):
    scheme = StorageScheme.LEGACY

    def _persist(self, txn: StoreTransaction, restaurant: Restaurant, entry: ArchiveEntry) -> int:
        key = entry.date.isoformat()
        existing = restaurant.queue_archive.get(key)
        if existing is not None:
            logger.warning(
                "Inline archive of %s for %s already holds %d records, appending",
                restaurant.id, key, len(existing.customers),
            )
            entry = merge_entries(existing.customers, entry)
        restaurant.queue_archive[key] = entry
        return 1


class ShardedArchiveWriter(ArchiveWriter):
    scheme = StorageScheme.SHARDED

    def _persist(self, txn: StoreTransaction, restaurant: Restaurant, entry: ArchiveEntry) -> int:
        existing = txn.archives_for(entry.date)
        if existing:
            earlier = [customer for part in existing for customer in part.customers]
            logger.warning(
                "Archive of %s for %s already has %d part(s) with %d records, rewriting the day",
                restaurant.id, entry.date, len(existing), len(earlier),
            )
            entry = merge_entries(earlier, entry)

        parts = plan_parts(
            entry,
            restaurant_id=restaurant.id,
            restaurant_name=restaurant.name,
            max_bytes=self.settings.document_limit_bytes,
            safety_buffer=self.settings.archive_safety_buffer_bytes,
            record_bytes=self.settings.record_size_estimate_bytes,
            measure=self.settings.measure_archive_parts,
        )
        written = {part.doc_id for part in parts}
        for part in existing:
            if part.doc_id not in written:
                txn.delete_archive(part.doc_id)
        for part in parts:
            txn.set_archive(part)
        return len(parts)


class CleanupService:
    def __init__(self, store: DocumentStore, clock: Optional[Clock] = None, settings: Optional[Settings] = None):
        self.store = store
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self.writers = {
            StorageScheme.LEGACY: LegacyArchiveWriter(store, self.clock, self.settings),
            StorageScheme.SHARDED: ShardedArchiveWriter(store, self.clock, self.settings),
        }

    def writer_for(self, day: date) -> ArchiveWriter:
        return self.writers[select_scheme(day, self.settings.archive_cutover_month)]

    def archive_and_reset(
        self,
        restaurant_id: str,
        day: date,
        cleanup_type: Optional[CleanupType] = None,
        is_manual_override: bool = False,
    ) -> CleanupResult:
        return self.writer_for(day).archive_and_reset(restaurant_id, day, cleanup_type, is_manual_override)

    def daily_cleanup(self, restaurant_id: str, is_manual: bool = False) -> CleanupResult:
        return self.archive_and_reset(restaurant_id, self.clock.today(), is_manual_override=is_manual)

    def run_auto_cleanup(self) -> dict[str, CleanupResult]:
        """Automatic midnight cleanup for every restaurant.

        Free-plan restaurants come back as ``MANUAL_REQUIRED``; they have to
        trigger the reset themselves.
        """
        day = self.clock.today()
        results = {}
        for restaurant_id in self.store.list_restaurant_ids():
            results[restaurant_id] = self.archive_and_reset(
                restaurant_id, day, CleanupType.AUTO, is_manual_override=False
            )
        cleaned = sum(1 for result in results.values() if result.success)
        logger.info("Automatic cleanup for %s: %d of %d restaurants reset", day, cleaned, len(results))
        return results
