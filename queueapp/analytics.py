"""Filtering, summary statistics and repeat-customer detection.

Input is the merged stream from ``ArchiveReader`` (archives plus the live
queue). Waits outside ``[0, WAIT_OUTLIER_MINUTES)`` are treated as bad data
(clock skew, stale test rows): they are shown as "-" and left out of the
average, but the records themselves stay in the filtered set.
"""

from datetime import date, timedelta
from enum import Enum
from typing import Iterable, Optional, Sequence

from pydantic import BaseModel, Field

from .schemas import CustomerRecord

WAIT_OUTLIER_MINUTES = 300


class TimeSlot(str, Enum):
    MORNING = "morning"
    LUNCH = "lunch"
    EVENING = "evening"
    DINNER = "dinner"
    LATE = "late"


SLOT_LABELS = {
    TimeSlot.MORNING: "Morning",
    TimeSlot.LUNCH: "Lunch",
    TimeSlot.EVENING: "Evening",
    TimeSlot.DINNER: "Dinner",
    TimeSlot.LATE: "Late Night",
}


class AnalyticsFilter(BaseModel):
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    time_slots: list[TimeSlot] = Field(default_factory=list)
    search_text: str = ""


class AnalyticsStats(BaseModel):
    total_customers: int
    total_guests: int
    avg_wait_minutes: Optional[int] = None
    peak_hour: Optional[int] = None
    peak_hour_window: Optional[str] = None
    peak_customers: int = 0


class RepeatCustomer(BaseModel):
    name: str
    phone: str
    visits: int
    total_guests: int
    avg_guests: int
    last_visit: str


class AnalyticsReport(BaseModel):
    records: list[CustomerRecord]
    stats: AnalyticsStats
    repeat_customers: list[RepeatCustomer]


def round_half_up(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def hour_in_slot(hour: int, slot: TimeSlot) -> bool:
    if slot == TimeSlot.MORNING:
        return 6 <= hour < 12
    if slot == TimeSlot.LUNCH:
        return 12 <= hour < 16
    if slot == TimeSlot.EVENING:
        return 16 <= hour < 18
    if slot == TimeSlot.DINNER:
        return 18 <= hour < 23
    if slot == TimeSlot.LATE:
        return hour >= 23 or hour < 6
    return False


def wait_minutes(record: CustomerRecord) -> Optional[int]:
    """Wait in whole minutes, or None when unseated or an outlier.

    The outlier bounds apply to the exact elapsed time, before rounding, so a
    party seated a few seconds before it joined is still excluded.
    """
    if record.allocated_at is None:
        return None
    elapsed = record.allocated_at - record.joined_at
    if not timedelta(0) <= elapsed < timedelta(minutes=WAIT_OUTLIER_MINUTES):
        return None
    return round_half_up(elapsed.total_seconds() / 60)


def filter_records(records: Iterable[CustomerRecord], filters: AnalyticsFilter) -> list[CustomerRecord]:
    filtered = list(records)

    if filters.date_from is not None:
        date_to = filters.date_to or filters.date_from
        filtered = [c for c in filtered if filters.date_from <= c.joined_at.date() <= date_to]
    elif filters.date_to is not None:
        filtered = [c for c in filtered if c.joined_at.date() <= filters.date_to]

    if filters.time_slots:
        filtered = [
            c for c in filtered
            if any(hour_in_slot(c.joined_at.hour, slot) for slot in filters.time_slots)
        ]

    query = filters.search_text.strip().lower()
    if query:
        filtered = [
            c for c in filtered
            if query in c.name.lower() or query in c.phone or query in c.queue_number.lower()
        ]

    return filtered


def format_peak_window(hour: int) -> str:
    return f"{hour}-{hour + 1}{'PM' if hour >= 12 else 'AM'}"


def compute_stats(records: Sequence[CustomerRecord]) -> AnalyticsStats:
    if not records:
        return AnalyticsStats(total_customers=0, total_guests=0)

    waits = [w for w in (wait_minutes(c) for c in records) if w is not None]
    avg_wait = round_half_up(sum(waits) / len(waits)) if waits else None

    hour_counts: dict[int, int] = {}
    for record in records:
        hour = record.joined_at.hour
        hour_counts[hour] = hour_counts.get(hour, 0) + 1
    # Ties go to the earliest hour of the day
    peak_hour = min(hour_counts, key=lambda hour: (-hour_counts[hour], hour))

    return AnalyticsStats(
        total_customers=len(records),
        total_guests=sum(c.guests for c in records),
        avg_wait_minutes=avg_wait,
        peak_hour=peak_hour,
        peak_hour_window=format_peak_window(peak_hour),
        peak_customers=hour_counts[peak_hour],
    )


def repeat_customers(records: Iterable[CustomerRecord]) -> list[RepeatCustomer]:
    by_phone: dict[str, dict] = {}
    for record in records:
        visit = by_phone.setdefault(
            record.phone,
            {"name": record.name, "phone": record.phone, "visits": 0, "total_guests": 0, "last_visit": record.joined_at},
        )
        visit["visits"] += 1
        visit["total_guests"] += record.guests
        if record.joined_at > visit["last_visit"]:
            visit["last_visit"] = record.joined_at

    repeats = [
        RepeatCustomer(
            name=visit["name"],
            phone=visit["phone"],
            visits=visit["visits"],
            total_guests=visit["total_guests"],
            avg_guests=round_half_up(visit["total_guests"] / visit["visits"]),
            last_visit=visit["last_visit"].isoformat(),
        )
        for visit in by_phone.values()
        if visit["visits"] >= 2
    ]
    repeats.sort(key=lambda customer: customer.visits, reverse=True)
    return repeats


def describe_filters(filters: AnalyticsFilter) -> str:
    if filters.date_from is None:
        period = "All Time"
    elif filters.date_to is None or filters.date_to == filters.date_from:
        period = filters.date_from.strftime("%b %d, %Y")
    else:
        period = f"{filters.date_from.strftime('%b %d, %Y')} - {filters.date_to.strftime('%b %d, %Y')}"
    slots = " & ".join(SLOT_LABELS[slot] for slot in filters.time_slots) or "All Day"
    return f"{period} | {slots}"


def build_report(records: Sequence[CustomerRecord], filters: AnalyticsFilter) -> AnalyticsReport:
    filtered = filter_records(records, filters)
    return AnalyticsReport(
        records=filtered,
        stats=compute_stats(filtered),
        repeat_customers=repeat_customers(records),
    )
