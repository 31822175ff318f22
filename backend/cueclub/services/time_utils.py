"""Venue clock helpers shared by the rate resolver and the promotion engine.

Timestamps are stored in UTC. Weekday and HH:MM checks run against the
venue's local wall clock (``settings.timezone``).
"""

from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo

from cueclub.core.config import settings


@lru_cache(maxsize=8)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_venue_local(value: datetime, tz_name: Optional[str] = None) -> datetime:
    return as_utc(value).astimezone(_zone(tz_name or settings.timezone))


def weekday_sun0(local: datetime) -> int:
    """Weekday number with 0=Sunday .. 6=Saturday."""
    return (local.weekday() + 1) % 7


def hhmm_to_minutes(value: str) -> int:
    hours, _, minutes = (value or "00:00").partition(":")
    return int(hours) * 60 + int(minutes or 0)


def in_time_window(minute_of_day: int, start: str, end: str) -> bool:
    """Half-open ``[start, end)`` check on minutes since local midnight.

    ``start > end`` wraps past midnight; ``start == end`` covers the whole day.
    """
    lo = hhmm_to_minutes(start)
    hi = hhmm_to_minutes(end)
    if lo == hi:
        return True
    if lo < hi:
        return lo <= minute_of_day < hi
    return minute_of_day >= lo or minute_of_day < hi


def minute_of_day(local: datetime) -> int:
    return local.hour * 60 + local.minute
