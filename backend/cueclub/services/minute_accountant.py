"""Elapsed-time accounting: raw minutes, grace period and step rounding."""

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal

from cueclub.models.snapshots import RoundingMode, RoundingPolicySnapshot
from cueclub.services.time_utils import as_utc

_ROUNDING = {
    RoundingMode.CEIL.value: ROUND_CEILING,
    RoundingMode.ROUND.value: ROUND_HALF_UP,
    RoundingMode.FLOOR.value: ROUND_FLOOR,
}


@dataclass(frozen=True)
class MinuteResult:
    raw_minutes: int
    billable_minutes: int


def round_currency(value) -> int:
    """Round half-up to the smallest currency unit."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_minutes(start: datetime, end: datetime, policy: RoundingPolicySnapshot) -> MinuteResult:
    """Billable minutes between ``start`` and ``end`` under ``policy``.

    Elapsed seconds are rounded up to whole minutes and clamped at zero. At
    or below the grace period nothing is billed; above it the full time is
    rounded to the policy step.
    """
    seconds = (as_utc(end) - as_utc(start)).total_seconds()
    raw = max(0, math.ceil(seconds / 60))

    if raw <= (policy.grace_minutes or 0):
        return MinuteResult(raw_minutes=raw, billable_minutes=0)

    step = int(policy.rounding_step or 1)
    if step <= 1:
        return MinuteResult(raw_minutes=raw, billable_minutes=raw)

    mode_name = getattr(policy.rounding_mode, "value", policy.rounding_mode)
    mode = _ROUNDING.get(mode_name, ROUND_CEILING)
    units = (Decimal(raw) / Decimal(step)).quantize(Decimal("1"), rounding=mode)
    return MinuteResult(raw_minutes=raw, billable_minutes=int(units) * step)


def compute_play_amount(rate_per_hour: int, billable_minutes: int) -> int:
    amount = Decimal(int(rate_per_hour or 0) * int(billable_minutes or 0)) / Decimal(60)
    return max(0, round_currency(amount))
