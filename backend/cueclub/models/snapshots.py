"""Frozen pricing values copied into a session at check-in.

These are plain value objects. ``PlaySession`` maps each one onto a group of
columns with ``sqlalchemy.orm.composite`` so the values travel with the
session row instead of being looked up from mutable configuration.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

ROUNDING_STEPS = (1, 5, 10, 15)


class RateSource(str, enum.Enum):
    """Which tier of the rate resolver produced the hourly rate."""

    OVERRIDE = "override"
    SCHEDULE = "schedule"
    BASE = "base"


class RoundingMode(str, enum.Enum):
    CEIL = "ceil"
    ROUND = "round"
    FLOOR = "floor"


@dataclass(frozen=True)
class TableSnapshot:
    """Table identity and the hourly rate resolved at check-in."""

    table_id: int
    table_name: str
    table_type_id: int
    table_type_code: str
    rate_per_hour: int
    rate_source: str


@dataclass(frozen=True)
class RoundingPolicySnapshot:
    """Venue rounding rule in force at check-in."""

    rounding_step: int
    rounding_mode: str
    grace_minutes: int
