"""Plan limits and premium upgrade tests."""

from datetime import datetime, timedelta

import pytest

from queueapp.errors import RestaurantNotFound
from queueapp.plans import BillingService, get_active_plan, is_premium_active, monthly_limit
from queueapp.schemas import Plan, PlanStatus, Restaurant

NOW = datetime(2026, 3, 10, 12, 0)


@pytest.fixture
def billing(store, clock):
    store.create_restaurant(Restaurant.new("r1", "Spice Route", clock.now()))
    return BillingService(store, clock)


class TestBilling:
    def test_payment_proof_marks_pending(self, billing, clock):
        restaurant = billing.submit_payment_proof("r1", "UTR-12345", 1999)

        assert restaurant.plan == Plan.FREE
        assert restaurant.plan_status == PlanStatus.PENDING
        assert restaurant.payment_proof.reference == "UTR-12345"
        assert restaurant.payment_proof.uploaded_at == clock.now()

    def test_approve_activates_offer(self, billing, store, clock):
        billing.submit_payment_proof("r1", "UTR-12345")

        restaurant = billing.approve_premium("r1", approved_by="ops", reason="Paid")

        offer = get_active_plan()
        assert restaurant.plan == Plan.PREMIUM
        assert restaurant.plan_status == PlanStatus.ACTIVE
        assert restaurant.plan_type == offer.id
        assert restaurant.plan_expiry_date == clock.now() + timedelta(days=offer.duration_days)
        assert restaurant.payment_proof.approved_by == "ops"
        assert store.get_restaurant("r1").plan == Plan.PREMIUM

    def test_reject_keeps_free_plan(self, billing):
        billing.submit_payment_proof("r1", "UTR-12345")

        restaurant = billing.reject_premium("r1", "Amount mismatch", rejected_by="ops")

        assert restaurant.plan == Plan.FREE
        assert restaurant.plan_status == PlanStatus.REJECTED
        assert restaurant.payment_proof.rejection_reason == "Amount mismatch"

    def test_unknown_restaurant(self, billing):
        with pytest.raises(RestaurantNotFound):
            billing.approve_premium("ghost")


class TestMonthlyLimit:
    def test_free_limit(self, settings):
        restaurant = Restaurant.new("r1", "Spice Route", NOW)

        assert monthly_limit(restaurant, restaurant.analytics, NOW, settings) == 5

    def test_active_premium_is_unlimited(self, settings):
        restaurant = Restaurant.new("r1", "Spice Route", NOW)
        restaurant.plan = Plan.PREMIUM
        restaurant.plan_expiry_date = NOW + timedelta(days=1)

        assert is_premium_active(restaurant, NOW)
        assert monthly_limit(restaurant, restaurant.analytics, NOW, settings) is None

    def test_expired_this_month_uses_snapshot_plus_grace(self, settings):
        restaurant = Restaurant.new("r1", "Spice Route", NOW)
        restaurant.plan = Plan.PREMIUM
        restaurant.plan_expiry_date = NOW - timedelta(days=2)
        restaurant.analytics.customers_at_expiry = 40

        assert not is_premium_active(restaurant, NOW)
        assert monthly_limit(restaurant, restaurant.analytics, NOW, settings) == 43

    def test_expired_last_month_falls_back_to_free(self, settings):
        restaurant = Restaurant.new("r1", "Spice Route", NOW)
        restaurant.plan = Plan.PREMIUM
        restaurant.plan_expiry_date = NOW - timedelta(days=30)
        restaurant.analytics.customers_at_expiry = 40

        assert monthly_limit(restaurant, restaurant.analytics, NOW, settings) == 5
