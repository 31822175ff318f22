"""Session request/response schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from cueclub.models.bill import PaymentMethod
from cueclub.models.promotion import DiscountType
from cueclub.models.session import SessionStatus
from cueclub.schemas.bill import BillResponse
from cueclub.services.time_utils import as_utc


class SessionOpen(BaseModel):
    """Check-in request."""

    table_id: int
    start_at: Optional[datetime] = None


class SessionItemAdd(BaseModel):
    product_id: int
    qty: int = 1
    note: Optional[str] = Field(default=None, max_length=300)


class SessionItemUpdate(BaseModel):
    qty: int


class DiscountLineInput(BaseModel):
    """Manual discount line; ``amount`` is computed against the subtotal when omitted."""

    name: str = Field(default="", max_length=160)
    discount_type: DiscountType = DiscountType.FIXED
    value: Decimal = Field(ge=0)
    amount: Optional[int] = Field(default=None, ge=0)
    meta: Optional[dict] = None


class CheckoutRequest(BaseModel):
    end_at: Optional[datetime] = None
    discount_lines: Optional[List[DiscountLineInput]] = None
    surcharge: int = Field(default=0, ge=0)
    payment_method: PaymentMethod = PaymentMethod.CASH
    paid: bool = True
    code: Optional[str] = Field(default=None, max_length=32)


class VoidRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=300)


class TransferRequest(BaseModel):
    to_table_id: int
    note: Optional[str] = Field(default=None, max_length=300)


class TableSnapshotResponse(BaseModel):
    table_id: int
    table_name: str
    table_type_id: int
    table_type_code: str
    rate_per_hour: int
    rate_source: str

    model_config = {"from_attributes": True}


class RoundingPolicyResponse(BaseModel):
    rounding_step: int
    rounding_mode: str
    grace_minutes: int

    model_config = {"from_attributes": True}


class SessionItemResponse(BaseModel):
    id: int
    product_id: Optional[int] = None
    category_id: Optional[int] = None
    name_snapshot: str
    price_snapshot: int
    quantity: int
    note: str = ""
    amount: int

    model_config = {"from_attributes": True}


class SessionResponse(BaseModel):
    """Session with its frozen snapshots and current items."""

    id: int
    code: str
    table_id: int
    table_snapshot: TableSnapshotResponse
    rounding_policy: RoundingPolicyResponse
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    status: SessionStatus
    opened_by: Optional[int] = None
    closed_by: Optional[int] = None
    note: str = ""
    void_reason: Optional[str] = None
    items: List[SessionItemResponse] = []
    service_amount: int = 0

    model_config = {"from_attributes": True}

    @field_validator("start_time", "end_time")
    @classmethod
    def attach_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else v


class ClosePreviewResponse(BaseModel):
    raw_minutes: int
    billable_minutes: int
    rate_per_hour: int
    play_amount: int
    service_amount: int
    sub_total: int
    end_at: datetime

    model_config = {"from_attributes": True}


class CheckoutResponse(BaseModel):
    session: SessionResponse
    bill: BillResponse
