"""Live queue operations: create a restaurant, join the queue, seat a party.

Each operation is one store transaction on the restaurant document, so a
join can never land in a queue that a concurrent cleanup is wiping.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Union

from .clock import Clock, SystemClock
from .config import Settings, get_settings
from .errors import QueueEntryNotFound, QueueLimitReached, RestaurantNotFound
from .payload import to_customer_record
from .plans import monthly_limit
from .schemas import (
    CustomerRecord,
    MonthlyHistoryEntry,
    Plan,
    QueueItem,
    QueueStatus,
    Restaurant,
    RestaurantAnalytics,
)
from .store import DocumentStore, StoreTransaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinResult:
    queue_number: str
    customers_this_month: int
    limit: Optional[int]
    record: CustomerRecord


def roll_month(restaurant: Restaurant, now: datetime) -> bool:
    """Move last month's counters into history when the month changes."""
    analytics = restaurant.analytics
    month = now.strftime("%Y-%m")
    if analytics.current_month == month:
        return False
    restaurant.monthly_history.append(
        MonthlyHistoryEntry(
            month=analytics.current_month,
            total_customers=analytics.customers_this_month,
            daily_stats=analytics.daily_stats,
            archived_at=now,
            customers_at_expiry=analytics.customers_at_expiry,
            expired_at=analytics.expired_at,
        )
    )
    restaurant.analytics = RestaurantAnalytics(current_month=month, last_reset_date=now.date())
    logger.info("Rolled analytics of %s from %s to %s", restaurant.id, analytics.current_month, month)
    return True


def snapshot_expiry(restaurant: Restaurant, now: datetime) -> bool:
    """Record usage at the moment a premium plan lapsed during this month."""
    analytics = restaurant.analytics
    expiry = restaurant.plan_expiry_date
    if (
        restaurant.plan != Plan.PREMIUM
        or expiry is None
        or expiry >= now
        or analytics.customers_at_expiry is not None
        or expiry.strftime("%Y-%m") != analytics.current_month
    ):
        return False
    analytics.customers_at_expiry = analytics.customers_this_month
    analytics.expired_at = expiry
    logger.info("Expiry snapshot for %s: %d customers at expiry", restaurant.id, analytics.customers_at_expiry)
    return True


def limit_message(restaurant: Restaurant) -> str:
    if restaurant.plan == Plan.PREMIUM and restaurant.analytics.customers_at_expiry is not None:
        return (
            f"Freemium limit reached ({restaurant.analytics.customers_at_expiry} before expiry + grace). "
            "Renew Premium for unlimited customers."
        )
    if restaurant.plan == Plan.FREE:
        return "Monthly limit reached. Upgrade to Premium for unlimited customers."
    return "Monthly limit reached. Renew Premium for unlimited customers."


class QueueService:
    def __init__(self, store: DocumentStore, clock: Optional[Clock] = None, settings: Optional[Settings] = None):
        self.store = store
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()

    def create_restaurant(self, restaurant_id: str, name: str) -> Restaurant:
        restaurant = Restaurant.new(restaurant_id, name, self.clock.now())
        self.store.create_restaurant(restaurant)
        logger.info("Created restaurant %s (%s)", restaurant_id, name)
        return restaurant

    def get_restaurant(self, restaurant_id: str) -> Restaurant:
        restaurant = self.store.get_restaurant(restaurant_id)
        if restaurant is None:
            raise RestaurantNotFound(restaurant_id)
        return restaurant

    def join_queue(self, restaurant_id: str, name: str, phone: str, guests: int, **extra: Any) -> JoinResult:
        def apply(txn: StoreTransaction) -> Union[JoinResult, QueueLimitReached]:
            restaurant = txn.restaurant
            if restaurant is None:
                raise RestaurantNotFound(restaurant_id)
            now = self.clock.now()
            changed = roll_month(restaurant, now)
            changed = snapshot_expiry(restaurant, now) or changed

            analytics = restaurant.analytics
            limit = monthly_limit(restaurant, analytics, now, self.settings)
            if limit is not None and analytics.customers_this_month >= limit:
                if changed:
                    txn.update_restaurant(restaurant)
                return QueueLimitReached(limit_message(restaurant), analytics.customers_this_month, limit)

            item = QueueItem(
                **extra,
                queue_number=f"A-{len(restaurant.queue) + 1:03d}",
                name=name.strip(),
                phone=phone.strip(),
                guests=guests,
                joined_at=now,
                status=QueueStatus.WAITING,
            )
            restaurant.queue.append(item)
            analytics.customers_this_month += 1
            today = now.date().isoformat()
            analytics.daily_stats[today] = analytics.daily_stats.get(today, 0) + 1
            txn.update_restaurant(restaurant)
            return JoinResult(
                queue_number=item.queue_number,
                customers_this_month=analytics.customers_this_month,
                limit=limit,
                record=to_customer_record(item),
            )

        outcome = self.store.run_transaction(restaurant_id, apply)
        if isinstance(outcome, QueueLimitReached):
            logger.info("Join rejected for %s: %s", restaurant_id, outcome.message)
            raise outcome
        logger.info("%s joined %s as %s", name, restaurant_id, outcome.queue_number)
        return outcome

    def allocate_table(self, restaurant_id: str, queue_number: str, table_no: str) -> CustomerRecord:
        def apply(txn: StoreTransaction) -> CustomerRecord:
            restaurant = txn.restaurant
            if restaurant is None:
                raise RestaurantNotFound(restaurant_id)
            for item in restaurant.queue:
                if item.queue_number == queue_number:
                    item.status = QueueStatus.ALLOCATED
                    item.table_no = table_no
                    item.allocated_at = self.clock.now()
                    txn.update_restaurant(restaurant)
                    return to_customer_record(item)
            raise QueueEntryNotFound(restaurant_id, queue_number)

        record = self.store.run_transaction(restaurant_id, apply)
        logger.info("Seated %s at table %s in %s", queue_number, table_no, restaurant_id)
        return record
