"""Storage scheme selection for archived queue days.

Days before the cutover month live inline on the restaurant document
(``queue_archive``); days from the cutover month onwards live in the
sharded archive collection. Writers and readers both call
``select_scheme`` so a date always resolves to the same physical layout
without probing storage.
"""

from datetime import date, datetime
from enum import Enum
from typing import Union

DEFAULT_CUTOVER_MONTH = "2026-01"


class StorageScheme(str, Enum):
    LEGACY = "legacy"
    SHARDED = "sharded"


def parse_day(value: Union[date, str]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(value[:10], "%Y-%m-%d").date()


def select_scheme(day: Union[date, str], cutover_month: str = DEFAULT_CUTOVER_MONTH) -> StorageScheme:
    month = parse_day(day).strftime("%Y-%m")
    if month >= cutover_month:
        return StorageScheme.SHARDED
    return StorageScheme.LEGACY
