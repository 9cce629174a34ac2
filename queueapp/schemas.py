from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class QueueStatus(str, Enum):
    WAITING = "waiting"
    ALLOCATED = "allocated"


class CleanupType(str, Enum):
    MANUAL = "manual"
    AUTO = "auto"


class RecordSource(str, Enum):
    LEGACY = "legacy"
    SHARDED = "sharded"
    LIVE = "live"


class Plan(str, Enum):
    FREE = "free"
    PREMIUM = "premium"


class PlanStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    REJECTED = "rejected"


class CustomerRecord(BaseModel):
    queue_number: str
    name: str
    phone: str
    guests: int = Field(gt=0)
    joined_at: datetime
    allocated_at: Optional[datetime] = None
    table_no: Optional[str] = None
    status: QueueStatus = QueueStatus.WAITING

    @model_validator(mode="after")
    def check_allocation(self) -> "CustomerRecord":
        seated = self.allocated_at is not None
        if seated != (self.table_no is not None):
            raise ValueError("allocated_at and table_no must be set together")
        if seated != (self.status == QueueStatus.ALLOCATED):
            raise ValueError("status must be 'allocated' exactly when a table is assigned")
        return self


# Fields that survive archival; anything else on a live item is transient.
ARCHIVED_FIELDS = frozenset(CustomerRecord.model_fields)


class QueueItem(CustomerRecord):
    """A live queue record; join forms may attach extra transient fields."""

    model_config = ConfigDict(extra="allow")

    notes: Optional[str] = None


class ArchivedCustomer(CustomerRecord):
    source: RecordSource
    from_archive: bool
    archive_date: Optional[date] = None
    archive_part: Optional[int] = None


class ArchiveSummary(BaseModel):
    total_customers: int
    served: int
    waiting: int
    total_in_all_parts: Optional[int] = None


class ArchiveEntry(BaseModel):
    date: date
    summary: ArchiveSummary
    customers: list[CustomerRecord]
    archived_at: datetime
    cleanup_type: CleanupType


class ArchivePart(BaseModel):
    doc_id: str
    restaurant_id: str
    restaurant_name: str
    date: date
    part_number: int = Field(ge=1)
    total_parts: int = Field(ge=1)
    summary: ArchiveSummary
    customers: list[CustomerRecord]
    has_more_parts: bool
    next_part: Optional[str] = None
    archived_at: datetime
    cleanup_type: CleanupType


class PaymentProof(BaseModel):
    reference: str
    amount: Optional[int] = None
    uploaded_at: datetime
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approval_reason: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None


class RestaurantAnalytics(BaseModel):
    current_month: str
    customers_this_month: int = 0
    last_reset_date: date
    daily_stats: dict[str, int] = Field(default_factory=dict)
    customers_at_expiry: Optional[int] = None
    expired_at: Optional[datetime] = None


class MonthlyHistoryEntry(BaseModel):
    month: str
    total_customers: int
    daily_stats: dict[str, int] = Field(default_factory=dict)
    archived_at: datetime
    customers_at_expiry: Optional[int] = None
    expired_at: Optional[datetime] = None


class Restaurant(BaseModel):
    id: str
    name: str
    plan: Plan = Plan.FREE
    plan_status: PlanStatus = PlanStatus.ACTIVE
    plan_type: Optional[str] = None
    plan_duration_days: Optional[int] = None
    plan_price: Optional[int] = None
    plan_start_date: Optional[datetime] = None
    plan_expiry_date: Optional[datetime] = None
    payment_proof: Optional[PaymentProof] = None
    queue: list[QueueItem] = Field(default_factory=list)
    queue_archive: dict[str, ArchiveEntry] = Field(default_factory=dict)
    last_cleanup_date: Optional[date] = None
    last_cleanup_at: Optional[datetime] = None
    analytics: RestaurantAnalytics
    monthly_history: list[MonthlyHistoryEntry] = Field(default_factory=list)
    created_at: datetime

    @classmethod
    def new(cls, restaurant_id: str, name: str, now: datetime) -> "Restaurant":
        return cls(
            id=restaurant_id,
            name=name,
            analytics=RestaurantAnalytics(
                current_month=now.strftime("%Y-%m"),
                last_reset_date=now.date(),
            ),
            created_at=now,
        )
