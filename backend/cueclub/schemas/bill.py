"""Bill schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from cueclub.models.bill import PaymentMethod
from cueclub.services.time_utils import as_utc


class BillItemResponse(BaseModel):
    """Charge line; play lines carry minutes/rate, product lines the snapshots."""

    id: int
    kind: str
    position: int
    amount: int
    minutes: Optional[int] = None
    rate_per_hour: Optional[int] = None
    product_id: Optional[int] = None
    name_snapshot: Optional[str] = None
    price_snapshot: Optional[int] = None
    quantity: Optional[int] = None
    note: Optional[str] = None

    model_config = {"from_attributes": True}


class BillDiscountResponse(BaseModel):
    id: int
    promotion_id: Optional[int] = None
    position: int
    name: str
    discount_type: str
    value: Decimal
    amount: int
    target: Optional[str] = None
    meta: Optional[dict] = None

    model_config = {"from_attributes": True}


class BillResponse(BaseModel):
    id: int
    code: str
    session_id: int
    table_id: int
    table_name: str
    items: List[BillItemResponse] = []
    discounts: List[BillDiscountResponse] = []
    play_amount: int
    service_amount: int
    sub_total: int
    discount_total: int
    surcharge: int
    total: int
    paid: bool
    payment_method: PaymentMethod
    paid_at: Optional[datetime] = None
    staff_id: Optional[int] = None
    note: str = ""
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @field_validator("paid_at", "created_at")
    @classmethod
    def attach_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else v


class BillPay(BaseModel):
    payment_method: PaymentMethod = PaymentMethod.CASH


class BillNoteUpdate(BaseModel):
    note: str = Field(default="", max_length=500)
