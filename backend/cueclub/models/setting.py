"""Venue-wide billing settings."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column, validates

from cueclub.db.base import Base, TimestampMixin, value_enum
from cueclub.models.snapshots import ROUNDING_STEPS, RoundingMode, RoundingPolicySnapshot


class VenueSetting(Base, TimestampMixin):
    """Single-row billing configuration.

    Read once per check-in and frozen into the session; editing it never
    changes an open or closed session's math.
    """

    __tablename__ = "venue_settings"

    id: Mapped[int] = mapped_column(primary_key=True)
    rounding_step: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    rounding_mode: Mapped[RoundingMode] = mapped_column(
        value_enum(RoundingMode, length=8), default=RoundingMode.CEIL, nullable=False
    )
    grace_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    @validates("rounding_step")
    def _snap_rounding_step(self, key, value):
        """Snap to the nearest allowed step (1, 5, 10, 15)."""
        step = int(value if value is not None else 5)
        if step in ROUNDING_STEPS:
            return step
        return min(ROUNDING_STEPS, key=lambda allowed: (abs(allowed - step), allowed))

    @validates("grace_minutes")
    def _clamp_grace(self, key, value):
        return max(0, int(value or 0))

    def policy_snapshot(self) -> RoundingPolicySnapshot:
        mode = self.rounding_mode
        return RoundingPolicySnapshot(
            rounding_step=self.rounding_step,
            rounding_mode=mode.value if isinstance(mode, RoundingMode) else str(mode),
            grace_minutes=self.grace_minutes,
        )
