"""Reassemble a restaurant's full customer history.

History is spread over three places: the legacy inline ``queue_archive``
map, the sharded archive collection (possibly several parts per day) and
the live queue. Both archive schemes are always read, whatever today's
date is, because a restaurant keeps its pre-cutover history forever.

Records are returned in source order (legacy, sharded, live); sorting is
up to the consumer.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from .errors import ArchiveStoreUnavailable, RestaurantNotFound
from .payload import to_customer_record
from .schemas import ArchivedCustomer, ArchivePart, CleanupType, CustomerRecord, RecordSource, Restaurant
from .splitter import part_doc_id
from .store import DocumentStore

logger = logging.getLogger(__name__)


@dataclass
class ArchiveHistory:
    records: list[ArchivedCustomer] = field(default_factory=list)
    degraded: bool = False
    missing_parts: list[str] = field(default_factory=list)


@dataclass
class ArchiveDaySummary:
    date: date
    scheme: RecordSource
    total_customers: int
    served: int
    waiting: int
    cleanup_type: CleanupType
    archived_at: datetime
    parts: int = 1


@dataclass
class CleanupHistory:
    days: list[ArchiveDaySummary] = field(default_factory=list)
    degraded: bool = False


def _tag(
    record: CustomerRecord,
    source: RecordSource,
    archive_date: Optional[date] = None,
    archive_part: Optional[int] = None,
) -> ArchivedCustomer:
    return ArchivedCustomer(
        **to_customer_record(record).model_dump(),
        source=source,
        from_archive=source != RecordSource.LIVE,
        archive_date=archive_date,
        archive_part=archive_part,
    )


def _identity(record: CustomerRecord) -> tuple[str, str, datetime]:
    return (record.queue_number, record.phone, record.joined_at)


class ArchiveReader:
    def __init__(self, store: DocumentStore):
        self.store = store

    def read_all(self, restaurant_id: str) -> list[ArchivedCustomer]:
        return self.read_history(restaurant_id).records

    def read_history(self, restaurant_id: str) -> ArchiveHistory:
        restaurant = self.store.get_restaurant(restaurant_id)
        if restaurant is None:
            raise RestaurantNotFound(restaurant_id)

        history = ArchiveHistory()
        seen: set[tuple[str, str, datetime]] = set()

        def add(record: ArchivedCustomer) -> None:
            key = _identity(record)
            if key in seen:
                logger.debug("Skipping duplicate record %s for %s", record.queue_number, restaurant_id)
                return
            seen.add(key)
            history.records.append(record)

        for record in self._legacy_records(restaurant):
            add(record)

        try:
            parts = self.store.query_archives(restaurant_id)
        except ArchiveStoreUnavailable as exc:
            logger.error("Archive collection unavailable for %s, serving legacy and live data only: %s", restaurant_id, exc)
            history.degraded = True
            parts = []

        history.missing_parts = self._missing_parts(parts)
        if history.missing_parts:
            logger.warning(
                "Incomplete archive chain for %s, missing: %s",
                restaurant_id, ", ".join(history.missing_parts),
            )
        for part in parts:
            for customer in part.customers:
                add(_tag(customer, RecordSource.SHARDED, part.date, part.part_number))

        for item in restaurant.queue:
            add(_tag(item, RecordSource.LIVE))

        return history

    def read_archive_summaries(self, restaurant_id: str, limit: int = 30) -> CleanupHistory:
        """Per-day cleanup summaries across both schemes, newest first.

        Sharded days report the total stored on their parts rather than
        re-counting customers, so a day with a missing part still shows how
        many customers it archived.
        """
        restaurant = self.store.get_restaurant(restaurant_id)
        if restaurant is None:
            raise RestaurantNotFound(restaurant_id)

        history = CleanupHistory()
        by_day: dict[date, ArchiveDaySummary] = {}
        for entry in restaurant.queue_archive.values():
            by_day[entry.date] = ArchiveDaySummary(
                date=entry.date,
                scheme=RecordSource.LEGACY,
                total_customers=entry.summary.total_customers,
                served=entry.summary.served,
                waiting=entry.summary.waiting,
                cleanup_type=entry.cleanup_type,
                archived_at=entry.archived_at,
            )

        try:
            parts = self.store.query_archives(restaurant_id)
        except ArchiveStoreUnavailable as exc:
            logger.error("Archive collection unavailable for %s, summarising legacy days only: %s", restaurant_id, exc)
            history.degraded = True
            parts = []

        grouped: dict[date, list[ArchivePart]] = defaultdict(list)
        for part in parts:
            grouped[part.date].append(part)
        for day, day_parts in grouped.items():
            first = min(day_parts, key=lambda part: part.part_number)
            total = first.summary.total_in_all_parts
            if total is None:
                total = sum(part.summary.total_customers for part in day_parts)
            by_day[day] = ArchiveDaySummary(
                date=day,
                scheme=RecordSource.SHARDED,
                total_customers=total,
                served=sum(part.summary.served for part in day_parts),
                waiting=sum(part.summary.waiting for part in day_parts),
                cleanup_type=first.cleanup_type,
                archived_at=first.archived_at,
                parts=first.total_parts,
            )

        history.days = sorted(by_day.values(), key=lambda summary: summary.date, reverse=True)[:limit]
        return history

    @staticmethod
    def _legacy_records(restaurant: Restaurant) -> list[ArchivedCustomer]:
        records = []
        for entry in restaurant.queue_archive.values():
            for customer in entry.customers:
                records.append(_tag(customer, RecordSource.LEGACY, entry.date))
        return records

    @staticmethod
    def _missing_parts(parts: list[ArchivePart]) -> list[str]:
        by_day: dict[date, list[ArchivePart]] = defaultdict(list)
        for part in parts:
            by_day[part.date].append(part)
        missing = []
        for day, day_parts in by_day.items():
            found = {part.part_number for part in day_parts}
            expected = max(part.total_parts for part in day_parts)
            for number in range(1, expected + 1):
                if number not in found:
                    missing.append(part_doc_id(day_parts[0].restaurant_id, day.isoformat(), number))
        return missing
