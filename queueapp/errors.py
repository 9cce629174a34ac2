"""Error taxonomy for queue and archive operations.

Read-path and queue failures are exceptions. Cleanup failures are returned
as ``CleanupResult`` values so schedulers and the UI can show a specific
message without catching anything.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class QueueAppError(Exception):
    """Base class for domain errors."""


class RestaurantNotFound(QueueAppError):
    def __init__(self, restaurant_id: str):
        super().__init__(f"Restaurant not found: {restaurant_id}")
        self.restaurant_id = restaurant_id


class RestaurantExists(QueueAppError):
    def __init__(self, restaurant_id: str):
        super().__init__(f"Restaurant already exists: {restaurant_id}")
        self.restaurant_id = restaurant_id


class QueueEntryNotFound(QueueAppError):
    def __init__(self, restaurant_id: str, queue_number: str):
        super().__init__(f"Queue number {queue_number} not found for {restaurant_id}")
        self.restaurant_id = restaurant_id
        self.queue_number = queue_number


class QueueLimitReached(QueueAppError):
    def __init__(self, message: str, customers_used: int, limit: int):
        super().__init__(message)
        self.message = message
        self.customers_used = customers_used
        self.limit = limit


class ArchiveStoreUnavailable(QueueAppError):
    """The archive collection could not be read."""


class TransactionConflict(QueueAppError):
    """Concurrent mutation kept winning after every retry."""


class CleanupError(str, Enum):
    NOT_FOUND = "not_found"
    ALREADY_CLEANED = "already_cleaned"
    MANUAL_REQUIRED = "manual_required"
    CONFLICT = "conflict"


CLEANUP_MESSAGES = {
    CleanupError.NOT_FOUND: "Restaurant not found",
    CleanupError.ALREADY_CLEANED: "Queue already reset today, nothing to do",
    CleanupError.MANUAL_REQUIRED: (
        "FREE plan requires manual cleanup. Upgrade to Premium for automatic midnight reset."
    ),
    CleanupError.CONFLICT: "Queue changed while resetting, please try again",
}


@dataclass(frozen=True)
class CleanupResult:
    success: bool
    error: Optional[CleanupError] = None
    archived_customers: int = 0
    parts_written: int = 0
    scheme: Optional[str] = None

    @classmethod
    def failed(cls, error: CleanupError) -> "CleanupResult":
        return cls(success=False, error=error)

    @property
    def message(self) -> str:
        if self.error is None:
            return "Queue archived and reset"
        return CLEANUP_MESSAGES[self.error]
