from datetime import date, datetime
from typing import Iterable

from .schemas import (
    ARCHIVED_FIELDS,
    ArchiveEntry,
    ArchiveSummary,
    CleanupType,
    CustomerRecord,
    QueueStatus,
)


def to_customer_record(item: CustomerRecord) -> CustomerRecord:
    """Strip live-only fields, keeping the archived record shape."""
    return CustomerRecord.model_validate(item.model_dump(include=set(ARCHIVED_FIELDS)))


def summarize(customers: list[CustomerRecord]) -> ArchiveSummary:
    served = 0
    waiting = 0
    for customer in customers:
        if customer.status == QueueStatus.ALLOCATED:
            served += 1
        elif customer.status == QueueStatus.WAITING:
            waiting += 1
    return ArchiveSummary(total_customers=len(customers), served=served, waiting=waiting)


def build_archive_entry(
    queue: Iterable[CustomerRecord],
    day: date,
    cleanup_type: CleanupType,
    archived_at: datetime,
) -> ArchiveEntry:
    customers = [to_customer_record(item) for item in queue]
    return ArchiveEntry(
        date=day,
        summary=summarize(customers),
        customers=customers,
        archived_at=archived_at,
        cleanup_type=cleanup_type,
    )


def merge_entries(earlier: Iterable[CustomerRecord], entry: ArchiveEntry) -> ArchiveEntry:
    """Prepend records archived earlier for the same day to a new entry."""
    customers = list(earlier) + entry.customers
    return entry.model_copy(update={"customers": customers, "summary": summarize(customers)})
