"""Live queue service tests."""

from datetime import date, datetime

import pytest

from queueapp.config import Settings
from queueapp.errors import QueueEntryNotFound, QueueLimitReached, RestaurantExists, RestaurantNotFound
from queueapp.live_queue import QueueService
from queueapp.plans import BillingService
from queueapp.schemas import CustomerRecord, Plan, QueueStatus


def join_many(service, count, restaurant_id="r1"):
    return [
        service.join_queue(restaurant_id, f"Guest {n}", f"90000000{n:02d}", 2)
        for n in range(1, count + 1)
    ]


def expire_premium(store, clock, expiry):
    BillingService(store, clock).approve_premium("r1")

    def apply(txn):
        txn.restaurant.plan_expiry_date = expiry
        txn.update_restaurant(txn.restaurant)

    store.run_transaction("r1", apply)


class TestRestaurants:
    def test_new_restaurant_defaults(self, queue_service):
        restaurant = queue_service.create_restaurant("r1", "Spice Route")

        assert restaurant.plan == Plan.FREE
        assert restaurant.queue == []
        assert restaurant.last_cleanup_date is None
        assert restaurant.analytics.current_month == "2026-03"
        assert restaurant.analytics.customers_this_month == 0

    def test_duplicate_id(self, queue_service):
        queue_service.create_restaurant("r1", "Spice Route")
        with pytest.raises(RestaurantExists):
            queue_service.create_restaurant("r1", "Again")

    def test_get_unknown(self, queue_service):
        with pytest.raises(RestaurantNotFound):
            queue_service.get_restaurant("ghost")


class TestJoinQueue:
    def test_numbers_are_sequential(self, queue_service):
        queue_service.create_restaurant("r1", "Spice Route")

        results = join_many(queue_service, 3)

        assert [r.queue_number for r in results] == ["A-001", "A-002", "A-003"]
        assert results[-1].customers_this_month == 3
        assert results[-1].limit == 5
        restaurant = queue_service.get_restaurant("r1")
        assert restaurant.analytics.daily_stats == {"2026-03-10": 3}
        assert all(item.status == QueueStatus.WAITING for item in restaurant.queue)

    def test_input_is_trimmed_and_extras_stay_live(self, queue_service):
        queue_service.create_restaurant("r1", "Spice Route")

        result = queue_service.join_queue("r1", "  Asha ", " 9000000001 ", 4, notes="high chair")

        assert result.record.name == "Asha"
        assert result.record.phone == "9000000001"
        assert type(result.record) is CustomerRecord
        assert queue_service.get_restaurant("r1").queue[0].notes == "high chair"

    def test_unknown_restaurant(self, queue_service):
        with pytest.raises(RestaurantNotFound):
            queue_service.join_queue("ghost", "Asha", "9000000001", 2)

    def test_free_plan_limit(self, queue_service):
        queue_service.create_restaurant("r1", "Spice Route")
        join_many(queue_service, 5)

        with pytest.raises(QueueLimitReached) as exc_info:
            queue_service.join_queue("r1", "One More", "9000000099", 2)

        assert exc_info.value.customers_used == 5
        assert exc_info.value.limit == 5
        assert "Upgrade to Premium" in exc_info.value.message
        assert len(queue_service.get_restaurant("r1").queue) == 5

    def test_premium_is_unlimited(self, store, clock, queue_service):
        queue_service.create_restaurant("r1", "Spice Route")
        BillingService(store, clock).approve_premium("r1")

        results = join_many(queue_service, 8)

        assert results[-1].customers_this_month == 8
        assert results[-1].limit is None

    def test_month_rollover_resets_counter(self, clock, queue_service):
        queue_service.create_restaurant("r1", "Spice Route")
        join_many(queue_service, 5)

        clock.set(datetime(2026, 4, 1, 10, 0))
        result = queue_service.join_queue("r1", "April", "9000000042", 2)

        assert result.customers_this_month == 1
        restaurant = queue_service.get_restaurant("r1")
        assert restaurant.analytics.current_month == "2026-04"
        assert restaurant.analytics.last_reset_date == date(2026, 4, 1)
        assert len(restaurant.monthly_history) == 1
        march = restaurant.monthly_history[0]
        assert march.month == "2026-03"
        assert march.total_customers == 5
        assert march.daily_stats == {"2026-03-10": 5}


class TestPremiumExpiry:
    def test_grace_allowance_after_expiry(self, store, clock, queue_service):
        queue_service.create_restaurant("r1", "Spice Route")
        expire_premium(store, clock, datetime(2026, 3, 20, 0, 0))
        join_many(queue_service, 4)

        clock.set(datetime(2026, 3, 21, 12, 0))
        results = [queue_service.join_queue("r1", f"Late {n}", f"91000000{n:02d}", 2) for n in range(3)]

        assert [r.limit for r in results] == [7, 7, 7]
        analytics = queue_service.get_restaurant("r1").analytics
        assert analytics.customers_at_expiry == 4
        assert analytics.expired_at == datetime(2026, 3, 20, 0, 0)

        with pytest.raises(QueueLimitReached) as exc_info:
            queue_service.join_queue("r1", "Too Late", "9200000000", 2)
        assert "4 before expiry" in exc_info.value.message

    def test_snapshot_is_kept_when_join_is_rejected(self, store, clock):
        settings = Settings(free_monthly_limit=5, freemium_grace_customers=0, _env_file=None)
        service = QueueService(store, clock, settings)
        service.create_restaurant("r1", "Spice Route")
        expire_premium(store, clock, datetime(2026, 3, 20, 0, 0))
        join_many(service, 4)

        clock.set(datetime(2026, 3, 21, 12, 0))
        with pytest.raises(QueueLimitReached):
            service.join_queue("r1", "Late", "9100000000", 2)

        assert service.get_restaurant("r1").analytics.customers_at_expiry == 4


class TestAllocateTable:
    def test_seats_party(self, clock, queue_service):
        queue_service.create_restaurant("r1", "Spice Route")
        join_many(queue_service, 2)
        clock.advance(minutes=25)

        record = queue_service.allocate_table("r1", "A-002", "T7")

        assert record.status == QueueStatus.ALLOCATED
        assert record.table_no == "T7"
        assert record.allocated_at == clock.now()
        queue = queue_service.get_restaurant("r1").queue
        assert queue[0].status == QueueStatus.WAITING
        assert queue[1].table_no == "T7"

    def test_unknown_queue_number(self, queue_service):
        queue_service.create_restaurant("r1", "Spice Route")
        join_many(queue_service, 1)

        with pytest.raises(QueueEntryNotFound):
            queue_service.allocate_table("r1", "A-404", "T1")
