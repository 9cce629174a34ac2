"""Archive part planning tests."""

import logging
from datetime import date, datetime, timedelta

import pytest
from conftest import make_item

from queueapp.config import Settings
from queueapp.payload import build_archive_entry
from queueapp.schemas import CleanupType
from queueapp.splitter import max_records_per_part, part_doc_id, plan_parts, serialized_size

DAY = date(2026, 3, 10)


def entry_with(count: int, seated_every: int = 0):
    start = datetime(2026, 3, 10, 9, 0)
    queue = []
    for n in range(1, count + 1):
        wait = 15 if seated_every and n % seated_every == 0 else None
        queue.append(make_item(n, start + timedelta(seconds=n), phone=f"9{n:09d}", wait_minutes=wait))
    return build_archive_entry(queue, DAY, CleanupType.AUTO, datetime(2026, 3, 10, 23, 59))


class TestSizing:
    def test_default_window(self):
        # 900 KiB safe threshold // 200 bytes
        assert max_records_per_part() == 4608

    def test_settings_defaults_use_the_same_window(self):
        settings = Settings(_env_file=None)

        window = max_records_per_part(
            settings.document_limit_bytes,
            settings.archive_safety_buffer_bytes,
            settings.record_size_estimate_bytes,
        )

        assert settings.document_limit_bytes - settings.archive_safety_buffer_bytes == 900 * 1024
        assert window == 4608

    def test_window_never_below_one(self):
        assert max_records_per_part(max_bytes=100, safety_buffer=200, record_bytes=50) == 1

    def test_part_ids(self):
        assert part_doc_id("r1", "2026-03-10", 1) == "r1-2026-03-10"
        assert part_doc_id("r1", "2026-03-10", 2) == "r1-2026-03-10-part2"


class TestPlanParts:
    def test_small_entry_is_single_part(self):
        entry = entry_with(12, seated_every=3)

        parts = plan_parts(entry, "r1", "Spice Route")

        assert len(parts) == 1
        part = parts[0]
        assert part.doc_id == "r1-2026-03-10"
        assert part.part_number == 1
        assert part.total_parts == 1
        assert part.has_more_parts is False
        assert part.next_part is None
        assert part.summary.total_customers == 12
        assert part.summary.served == 4
        assert part.summary.total_in_all_parts == 12
        assert part.restaurant_name == "Spice Route"

    def test_empty_entry_still_writes_one_part(self):
        parts = plan_parts(entry_with(0), "r1", "Spice Route")

        assert len(parts) == 1
        assert parts[0].customers == []
        assert parts[0].summary.total_customers == 0
        assert parts[0].has_more_parts is False

    def test_ten_thousand_customers_split_on_default_budget(self):
        entry = entry_with(10_000)

        parts = plan_parts(entry, "r1", "Spice Route")

        assert [len(p.customers) for p in parts] == [4608, 4608, 784]
        assert [p.doc_id for p in parts] == [
            "r1-2026-03-10",
            "r1-2026-03-10-part2",
            "r1-2026-03-10-part3",
        ]

    def test_small_budget_chain_and_order(self):
        entry = entry_with(100, seated_every=4)

        parts = plan_parts(entry, "r1", "Spice Route", max_bytes=10_000, safety_buffer=1_000, record_bytes=300)

        assert len(parts) == 4
        assert [len(p.customers) for p in parts] == [30, 30, 30, 10]
        for index, part in enumerate(parts):
            assert part.part_number == index + 1
            assert part.total_parts == 4
            assert part.summary.total_in_all_parts == 100
            assert part.summary.total_customers == len(part.customers)
            if index < 3:
                assert part.has_more_parts is True
                assert part.next_part == parts[index + 1].doc_id
            else:
                assert part.has_more_parts is False
                assert part.next_part is None

        rebuilt = [customer for part in parts for customer in part.customers]
        assert rebuilt == entry.customers
        assert sum(p.summary.served for p in parts) == entry.summary.served

    def test_measured_parts_fit_budget(self):
        entry = entry_with(300)

        parts = plan_parts(entry, "r1", "Spice Route", max_bytes=5_000, safety_buffer=0, measure=True)

        assert len(parts) > 1
        assert all(serialized_size(part) <= 5_000 for part in parts)
        assert [c for part in parts for c in part.customers] == entry.customers

    def test_oversized_parts_are_logged_once(self, caplog):
        entry = entry_with(250)

        with caplog.at_level(logging.WARNING, logger="queueapp.splitter"):
            parts = plan_parts(entry, "r1", "Spice Route", max_bytes=2_000, safety_buffer=0, record_bytes=20)

        assert [len(p.customers) for p in parts] == [100, 100, 50]
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1


@pytest.mark.parametrize("count", [1, 4608])
def test_entries_under_budget_are_not_split(count):
    parts = plan_parts(entry_with(count), "r1", "Spice Route")
    assert len(parts) == 1
    assert len(parts[0].customers) == count
