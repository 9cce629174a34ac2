"""Plans, monthly customer limits and premium upgrade state transitions."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from .clock import Clock, SystemClock
from .config import Settings, get_settings
from .errors import RestaurantNotFound
from .schemas import PaymentProof, Plan, PlanStatus, Restaurant, RestaurantAnalytics
from .store import DocumentStore, StoreTransaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanOffer:
    id: str
    duration_days: int
    price: int
    display_name: str
    display_price: str
    description: str


PLAN_CATALOG = {
    "intro_quarterly": PlanOffer(
        "intro_quarterly_2026", 90, 1999, "Quarterly Premium", "₹1,999 for 3 months", "Limited time offer"
    ),
    "monthly": PlanOffer("monthly_standard", 30, 1999, "Monthly Premium", "₹1,999/month", "Standard monthly plan"),
    "quarterly": PlanOffer(
        "quarterly_standard", 90, 5499, "Quarterly Premium", "₹5,499/quarter", "Best value - 3 months"
    ),
    "yearly": PlanOffer("yearly_standard", 365, 19999, "Yearly Premium", "₹19,999/year", "Maximum savings"),
}
ACTIVE_PLAN = "intro_quarterly"


def get_active_plan() -> PlanOffer:
    return PLAN_CATALOG[ACTIVE_PLAN]


def is_premium_active(restaurant: Restaurant, now: datetime) -> bool:
    return (
        restaurant.plan == Plan.PREMIUM
        and restaurant.plan_status == PlanStatus.ACTIVE
        and (restaurant.plan_expiry_date is None or restaurant.plan_expiry_date > now)
    )


def monthly_limit(
    restaurant: Restaurant,
    analytics: RestaurantAnalytics,
    now: datetime,
    settings: Optional[Settings] = None,
) -> Optional[int]:
    """Customers allowed this month, or None for unlimited.

    A premium plan that expired during the current month keeps the usage
    counted at expiry plus a grace allowance until the month ends.
    """
    settings = settings or get_settings()
    if is_premium_active(restaurant, now):
        return None
    if (
        restaurant.plan == Plan.PREMIUM
        and restaurant.plan_expiry_date is not None
        and restaurant.plan_expiry_date.strftime("%Y-%m") == now.strftime("%Y-%m")
        and analytics.customers_at_expiry is not None
    ):
        return analytics.customers_at_expiry + settings.freemium_grace_customers
    return settings.free_monthly_limit


class BillingService:
    def __init__(self, store: DocumentStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or SystemClock()

    def _update(self, restaurant_id: str, change: Callable[[Restaurant, datetime], None]) -> Restaurant:
        def apply(txn: StoreTransaction) -> Restaurant:
            restaurant = txn.restaurant
            if restaurant is None:
                raise RestaurantNotFound(restaurant_id)
            change(restaurant, self.clock.now())
            txn.update_restaurant(restaurant)
            return restaurant

        return self.store.run_transaction(restaurant_id, apply)

    def submit_payment_proof(self, restaurant_id: str, reference: str, amount: Optional[int] = None) -> Restaurant:
        def change(restaurant: Restaurant, now: datetime) -> None:
            restaurant.payment_proof = PaymentProof(reference=reference, amount=amount, uploaded_at=now)
            restaurant.plan_status = PlanStatus.PENDING

        restaurant = self._update(restaurant_id, change)
        logger.info("Payment proof submitted for %s", restaurant_id)
        return restaurant

    def approve_premium(
        self,
        restaurant_id: str,
        approved_by: str = "platform_admin",
        reason: str = "Approved",
    ) -> Restaurant:
        offer = get_active_plan()

        def change(restaurant: Restaurant, now: datetime) -> None:
            restaurant.plan = Plan.PREMIUM
            restaurant.plan_status = PlanStatus.ACTIVE
            restaurant.plan_type = offer.id
            restaurant.plan_duration_days = offer.duration_days
            restaurant.plan_price = offer.price
            restaurant.plan_start_date = now
            restaurant.plan_expiry_date = now + timedelta(days=offer.duration_days)
            if restaurant.payment_proof is not None:
                restaurant.payment_proof.approved_at = now
                restaurant.payment_proof.approved_by = approved_by
                restaurant.payment_proof.approval_reason = reason

        restaurant = self._update(restaurant_id, change)
        logger.info("Premium approved for %s until %s", restaurant_id, restaurant.plan_expiry_date)
        return restaurant

    def reject_premium(self, restaurant_id: str, reason: str, rejected_by: str = "platform_admin") -> Restaurant:
        def change(restaurant: Restaurant, now: datetime) -> None:
            restaurant.plan_status = PlanStatus.REJECTED
            if restaurant.payment_proof is not None:
                restaurant.payment_proof.rejected_at = now
                restaurant.payment_proof.rejected_by = rejected_by
                restaurant.payment_proof.rejection_reason = reason

        restaurant = self._update(restaurant_id, change)
        logger.info("Premium rejected for %s: %s", restaurant_id, reason)
        return restaurant
