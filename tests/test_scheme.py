"""Storage scheme selection tests."""

from datetime import date, datetime

import pytest

from queueapp.scheme import StorageScheme, parse_day, select_scheme


class TestSelectScheme:
    @pytest.mark.parametrize(
        "day,expected",
        [
            (date(2025, 12, 31), StorageScheme.LEGACY),
            (date(2026, 1, 1), StorageScheme.SHARDED),
            (date(2026, 1, 15), StorageScheme.SHARDED),
            (date(2024, 6, 1), StorageScheme.LEGACY),
            (date(2031, 2, 3), StorageScheme.SHARDED),
        ],
    )
    def test_cutover_boundary(self, day, expected):
        assert select_scheme(day) == expected

    def test_accepts_iso_strings(self):
        assert select_scheme("2025-12-31") == StorageScheme.LEGACY
        assert select_scheme("2026-01-01T00:00:00") == StorageScheme.SHARDED

    def test_same_day_always_same_scheme(self):
        day = date(2026, 1, 1)
        assert {select_scheme(day) for _ in range(10)} == {StorageScheme.SHARDED}

    def test_custom_cutover(self):
        assert select_scheme(date(2026, 5, 31), "2026-06") == StorageScheme.LEGACY
        assert select_scheme(date(2026, 6, 1), "2026-06") == StorageScheme.SHARDED


def test_parse_day_normalizes_inputs():
    assert parse_day(datetime(2026, 2, 3, 23, 59)) == date(2026, 2, 3)
    assert parse_day(date(2026, 2, 3)) == date(2026, 2, 3)
    assert parse_day("2026-02-03") == date(2026, 2, 3)
