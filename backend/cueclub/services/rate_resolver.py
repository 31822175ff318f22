"""Hourly rate resolution for a table at a given instant.

Priority:
1. Table override (``Table.rate_per_hour`` not None and >= 0)
2. First matching entry of the table type's ``day_rates`` schedule
3. The table type's base rate (0 when unset)

Resolution never fails; a missing tier falls through to the next one.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from cueclub.models.catalog import Table, TableType
from cueclub.models.snapshots import RateSource, TableSnapshot
from cueclub.services.time_utils import in_time_window, minute_of_day, to_venue_local, weekday_sun0


@dataclass(frozen=True)
class ResolvedRate:
    rate_per_hour: int
    source: RateSource


def _schedule_entry_matches(entry: dict, weekday: int, minute: int) -> bool:
    days = entry.get("days") or []
    if days and weekday not in days:
        return False
    start, end = entry.get("from"), entry.get("to")
    if not start or not end:
        return True
    return in_time_window(minute, start, end)


def resolve_rate(
    table: Table,
    table_type: Optional[TableType],
    at: datetime,
    tz_name: Optional[str] = None,
) -> ResolvedRate:
    if table.rate_per_hour is not None and table.rate_per_hour >= 0:
        return ResolvedRate(int(table.rate_per_hour), RateSource.OVERRIDE)

    if table_type is None:
        return ResolvedRate(0, RateSource.BASE)

    local = to_venue_local(at, tz_name)
    weekday = weekday_sun0(local)
    minute = minute_of_day(local)
    for entry in table_type.day_rates or []:
        if _schedule_entry_matches(entry, weekday, minute):
            return ResolvedRate(int(entry.get("rate_per_hour") or 0), RateSource.SCHEDULE)

    return ResolvedRate(int(table_type.base_rate_per_hour or 0), RateSource.BASE)


def build_table_snapshot(table: Table, table_type: TableType, at: datetime) -> TableSnapshot:
    """Freeze table identity and the rate in force at ``at``."""
    resolved = resolve_rate(table, table_type, at)
    return TableSnapshot(
        table_id=table.id,
        table_name=table.name,
        table_type_id=table_type.id,
        table_type_code=(table_type.code or "").upper(),
        rate_per_hour=resolved.rate_per_hour,
        rate_source=resolved.source.value,
    )
