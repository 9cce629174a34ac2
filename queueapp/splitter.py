"""Size estimation and splitting of archive entries into capped parts.

A document store refuses documents above a hard ceiling (about 1 MB), so
an archive entry whose JSON encoding exceeds the 900 KiB safe threshold is
cut into sequential parts chained by ``next_part``. Chunk boundaries are
positional; the customer order of the entry is never changed.
"""

import logging
from typing import Optional

from pydantic import BaseModel

from .payload import summarize
from .schemas import ArchiveEntry, ArchivePart, CustomerRecord

logger = logging.getLogger(__name__)

DOCUMENT_LIMIT_BYTES = 1000 * 1024
SAFETY_BUFFER_BYTES = 100 * 1024
RECORD_SIZE_ESTIMATE_BYTES = 200


def serialized_size(model: BaseModel) -> int:
    return len(model.model_dump_json().encode("utf-8"))


def max_records_per_part(
    max_bytes: int = DOCUMENT_LIMIT_BYTES,
    safety_buffer: int = SAFETY_BUFFER_BYTES,
    record_bytes: int = RECORD_SIZE_ESTIMATE_BYTES,
) -> int:
    safe_bytes = max(max_bytes - safety_buffer, 0)
    return max(safe_bytes // record_bytes, 1)


def part_doc_id(restaurant_id: str, day_iso: str, part_number: int) -> str:
    if part_number == 1:
        return f"{restaurant_id}-{day_iso}"
    return f"{restaurant_id}-{day_iso}-part{part_number}"


def plan_parts(
    entry: ArchiveEntry,
    restaurant_id: str,
    restaurant_name: str,
    max_bytes: int = DOCUMENT_LIMIT_BYTES,
    safety_buffer: int = SAFETY_BUFFER_BYTES,
    record_bytes: int = RECORD_SIZE_ESTIMATE_BYTES,
    measure: bool = False,
) -> list[ArchivePart]:
    """Lay out an archive entry as one or more part documents.

    Returns a single part when the whole entry fits under
    ``max_bytes - safety_buffer``. Otherwise the customers are windowed by
    ``max_records_per_part`` (or, with ``measure=True``, by their actual
    encoded sizes). An entry with no customers still yields one empty part.
    """
    safe_bytes = max(max_bytes - safety_buffer, 0)
    customers = entry.customers

    if serialized_size(entry) <= safe_bytes:
        chunks = [customers]
    elif measure:
        chunks = _measured_chunks(entry, restaurant_id, restaurant_name, safe_bytes)
    else:
        window = max_records_per_part(max_bytes, safety_buffer, record_bytes)
        chunks = [customers[offset:offset + window] for offset in range(0, len(customers), window)]

    if not chunks:
        chunks = [[]]

    parts = _chain(entry, restaurant_id, restaurant_name, chunks)
    if not measure and len(parts) > 1:
        oversized = [part.doc_id for part in parts if serialized_size(part) > safe_bytes]
        if oversized:
            logger.warning(
                "%d of %d archive parts for %s exceed the %d byte budget "
                "(record size estimate %d bytes), first: %s",
                len(oversized), len(parts), entry.date, safe_bytes, record_bytes, oversized[0],
            )
    return parts


def _chain(
    entry: ArchiveEntry,
    restaurant_id: str,
    restaurant_name: str,
    chunks: list[list[CustomerRecord]],
) -> list[ArchivePart]:
    day_iso = entry.date.isoformat()
    total_parts = len(chunks)
    total_customers = len(entry.customers)
    parts = []
    for index, chunk in enumerate(chunks):
        part_number = index + 1
        has_more = part_number < total_parts
        summary = summarize(chunk)
        summary.total_in_all_parts = total_customers
        next_part: Optional[str] = part_doc_id(restaurant_id, day_iso, part_number + 1) if has_more else None
        parts.append(
            ArchivePart(
                doc_id=part_doc_id(restaurant_id, day_iso, part_number),
                restaurant_id=restaurant_id,
                restaurant_name=restaurant_name,
                date=entry.date,
                part_number=part_number,
                total_parts=total_parts,
                summary=summary,
                customers=list(chunk),
                has_more_parts=has_more,
                next_part=next_part,
                archived_at=entry.archived_at,
                cleanup_type=entry.cleanup_type,
            )
        )
    return parts


def _measured_chunks(
    entry: ArchiveEntry,
    restaurant_id: str,
    restaurant_name: str,
    safe_bytes: int,
) -> list[list[CustomerRecord]]:
    # Header size with a generous part count and next_part id
    header = _chain(entry, restaurant_id, restaurant_name, [[], []])[0]
    header_bytes = serialized_size(header) + 16
    budget = safe_bytes - header_bytes

    chunks: list[list[CustomerRecord]] = []
    current: list[CustomerRecord] = []
    used = 0
    for customer in entry.customers:
        size = serialized_size(customer) + 1
        if current and used + size > budget:
            chunks.append(current)
            current = []
            used = 0
        current.append(customer)
        used += size
    if current:
        chunks.append(current)
    return chunks

