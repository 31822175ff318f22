"""Venue billing settings schemas."""

from typing import Optional

from pydantic import BaseModel, Field

from cueclub.models.snapshots import RoundingMode


class BillingSettingsResponse(BaseModel):
    rounding_step: int
    rounding_mode: RoundingMode
    grace_minutes: int

    model_config = {"from_attributes": True}


class BillingSettingsUpdate(BaseModel):
    """Steps outside 1/5/10/15 are snapped to the nearest allowed step."""

    rounding_step: Optional[int] = Field(default=None, ge=1, le=60)
    rounding_mode: Optional[RoundingMode] = None
    grace_minutes: Optional[int] = Field(default=None, ge=0, le=120)
