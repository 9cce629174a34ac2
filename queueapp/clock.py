from datetime import date, datetime
from typing import Protocol


class Clock(Protocol):
    """Source of the current instant and calendar day."""

    def now(self) -> datetime:
        ...

    def today(self) -> date:
        ...


class SystemClock:
    """Wall clock in the restaurant's local time."""

    def now(self) -> datetime:
        return datetime.now()

    def today(self) -> date:
        return self.now().date()
