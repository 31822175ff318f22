"""Tests for hourly rate resolution and the check-in table snapshot."""

import pytest
from datetime import datetime, timezone

from cueclub.models.catalog import Table, TableType
from cueclub.models.snapshots import RateSource
from cueclub.services.rate_resolver import build_table_snapshot, resolve_rate
from cueclub.services.time_utils import in_time_window, weekday_sun0

# 2026-10-12 is a Monday, 2026-10-18 a Sunday
MONDAY = datetime(2026, 10, 12, tzinfo=timezone.utc)
SUNDAY = datetime(2026, 10, 18, tzinfo=timezone.utc)


def _at(day: datetime, hour: int, minute: int = 0) -> datetime:
    return day.replace(hour=hour, minute=minute)


@pytest.fixture
def table_type() -> TableType:
    return TableType(
        id=1,
        code="pool",
        name="Pool",
        base_rate_per_hour=50000,
        day_rates=[
            {"days": [1, 2, 3, 4, 5], "from": "06:00", "to": "09:00", "rate_per_hour": 40000},
            {"days": [], "from": "22:00", "to": "02:00", "rate_per_hour": 60000},
            {"days": [0, 6], "from": "09:00", "to": "22:00", "rate_per_hour": 55000},
        ],
    )


@pytest.fixture
def table() -> Table:
    return Table(id=7, name="P1", table_type_id=1)


class TestResolveRate:
    def test_base_rate_when_no_schedule_matches(self, table, table_type):
        resolved = resolve_rate(table, table_type, _at(MONDAY, 12), "UTC")
        assert resolved.rate_per_hour == 50000
        assert resolved.source == RateSource.BASE

    def test_schedule_window_on_matching_weekday(self, table, table_type):
        resolved = resolve_rate(table, table_type, _at(MONDAY, 7, 30), "UTC")
        assert resolved.rate_per_hour == 40000
        assert resolved.source == RateSource.SCHEDULE

    def test_window_end_is_exclusive(self, table, table_type):
        assert resolve_rate(table, table_type, _at(MONDAY, 9), "UTC").rate_per_hour == 50000
        assert resolve_rate(table, table_type, _at(MONDAY, 6), "UTC").rate_per_hour == 40000

    def test_weekday_window_skipped_on_sunday(self, table, table_type):
        resolved = resolve_rate(table, table_type, _at(SUNDAY, 7), "UTC")
        assert resolved.rate_per_hour == 50000

    def test_weekend_entry(self, table, table_type):
        assert resolve_rate(table, table_type, _at(SUNDAY, 15), "UTC").rate_per_hour == 55000

    def test_overnight_window_wraps_midnight(self, table, table_type):
        assert resolve_rate(table, table_type, _at(MONDAY, 23), "UTC").rate_per_hour == 60000
        assert resolve_rate(table, table_type, _at(MONDAY, 1, 59), "UTC").rate_per_hour == 60000
        assert resolve_rate(table, table_type, _at(MONDAY, 2), "UTC").rate_per_hour == 50000

    def test_first_matching_entry_wins(self, table, table_type):
        table_type.day_rates = [
            {"days": [], "from": "00:00", "to": "00:00", "rate_per_hour": 10000},
            {"days": [], "from": "00:00", "to": "00:00", "rate_per_hour": 20000},
        ]
        assert resolve_rate(table, table_type, _at(MONDAY, 12), "UTC").rate_per_hour == 10000

    def test_table_override_beats_schedule(self, table, table_type):
        table.rate_per_hour = 45000
        resolved = resolve_rate(table, table_type, _at(MONDAY, 7), "UTC")
        assert resolved.rate_per_hour == 45000
        assert resolved.source == RateSource.OVERRIDE

    def test_zero_override_is_honoured(self, table, table_type):
        table.rate_per_hour = 0
        resolved = resolve_rate(table, table_type, _at(MONDAY, 12), "UTC")
        assert resolved.rate_per_hour == 0
        assert resolved.source == RateSource.OVERRIDE

    def test_missing_table_type_resolves_to_zero(self, table):
        resolved = resolve_rate(table, None, _at(MONDAY, 12), "UTC")
        assert resolved.rate_per_hour == 0
        assert resolved.source == RateSource.BASE

    def test_weekday_uses_venue_timezone(self, table, table_type):
        # 23:30 UTC Sunday is 06:30 Monday in Ho Chi Minh City
        at = _at(SUNDAY, 23, 30)
        assert resolve_rate(table, table_type, at, "Asia/Ho_Chi_Minh").rate_per_hour == 40000


class TestTableSnapshot:
    def test_snapshot_freezes_identity_and_rate(self, table, table_type):
        snapshot = build_table_snapshot(table, table_type, _at(MONDAY, 12))
        assert snapshot.table_id == 7
        assert snapshot.table_name == "P1"
        assert snapshot.table_type_id == 1
        assert snapshot.table_type_code == "POOL"
        assert snapshot.rate_per_hour == 50000
        assert snapshot.rate_source == "base"


class TestTimeHelpers:
    def test_weekday_numbering_starts_on_sunday(self):
        assert weekday_sun0(SUNDAY) == 0
        assert weekday_sun0(MONDAY) == 1
        assert weekday_sun0(datetime(2026, 10, 17)) == 6

    def test_equal_bounds_cover_whole_day(self):
        assert in_time_window(0, "08:00", "08:00")
        assert in_time_window(23 * 60 + 59, "08:00", "08:00")

    def test_half_open_window(self):
        assert in_time_window(8 * 60, "08:00", "10:00")
        assert not in_time_window(10 * 60, "08:00", "10:00")


def test_late_night_window_to_three_am(table):
    late = TableType(
        id=2,
        code="snooker",
        name="Snooker",
        base_rate_per_hour=80000,
        day_rates=[{"days": [], "from": "22:00", "to": "03:00", "rate_per_hour": 90000}],
    )
    assert resolve_rate(table, late, _at(MONDAY, 2, 30), "UTC").rate_per_hour == 90000
    assert resolve_rate(table, late, _at(MONDAY, 10), "UTC").rate_per_hour == 80000
