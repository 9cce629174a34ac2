import csv
import io
import re
from datetime import date
from typing import Iterable, Optional

from pydantic import BaseModel

from .analytics import wait_minutes
from .schemas import CustomerRecord

CSV_HEADERS = [
    "Queue Number",
    "Customer Name",
    "Phone",
    "Guests",
    "Join Date",
    "Join Time",
    "Seat Date",
    "Seat Time",
    "Wait Duration (minutes)",
    "Table Number",
    "Status",
]


class ExportRow(BaseModel):
    queue_number: str
    name: str
    phone: str
    guests: int
    join_date: str
    join_time: str
    seat_date: str
    seat_time: str
    wait_minutes: Optional[int] = None
    wait_display: str
    table_no: str
    status: str


def build_export_rows(records: Iterable[CustomerRecord]) -> list[ExportRow]:
    rows = []
    for record in records:
        minutes = wait_minutes(record)
        seated = record.allocated_at
        rows.append(
            ExportRow(
                queue_number=record.queue_number,
                name=record.name,
                phone=record.phone,
                guests=record.guests,
                join_date=record.joined_at.date().isoformat(),
                join_time=record.joined_at.strftime("%H:%M:%S"),
                seat_date=seated.date().isoformat() if seated else "",
                seat_time=seated.strftime("%H:%M:%S") if seated else "",
                wait_minutes=minutes,
                wait_display=f"{minutes}m" if minutes is not None else "-",
                table_no=record.table_no or "",
                status=record.status.value,
            )
        )
    return rows


def render_csv(rows: Iterable[ExportRow]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for row in rows:
        writer.writerow(
            [
                row.queue_number,
                row.name,
                row.phone,
                row.guests,
                row.join_date,
                row.join_time,
                row.seat_date,
                row.seat_time,
                "" if row.wait_minutes is None else row.wait_minutes,
                row.table_no,
                row.status,
            ]
        )
    return buffer.getvalue()


def export_filename(restaurant_name: str, day: date) -> str:
    safe_name = re.sub(r"[^a-z0-9]", "-", restaurant_name, flags=re.IGNORECASE)
    return f"QueueApp-{safe_name}-{day.isoformat()}.csv"
