"""Promotion schemas."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from cueclub.models.promotion import DiscountTarget, DiscountType, PromotionScope
from cueclub.schemas.session import ClosePreviewResponse


class PromotionBase(BaseModel):
    """Fields shared by create and response.

    ``rule`` carries the scope's payload:
    - time: ``{"table_type_ids": [...], "min_minutes": int}``
    - product: ``{"category_ids": [...], "product_ids": [...], "combo": [{"product_id", "qty"}]}``
    - bill: ``{"min_subtotal", "min_service_amount", "min_play_minutes", "table_type_ids"}``
    """

    name: str = Field(min_length=1, max_length=160)
    code: str = Field(min_length=1, max_length=32)
    description: str = ""
    scope: PromotionScope
    active: bool = True
    apply_order: int = 100
    stackable: bool = True
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    days_of_week: List[int] = []
    time_ranges: List[Dict[str, str]] = []
    rule: Dict[str, Any] = {}
    discount_type: DiscountType
    discount_value: Decimal = Field(ge=0)
    discount_target: DiscountTarget = DiscountTarget.BILL
    max_amount: Optional[int] = Field(default=None, ge=0)


class PromotionCreate(PromotionBase):
    pass


class PromotionUpdate(BaseModel):
    """Partial update; omitted fields keep their stored value."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=160)
    code: Optional[str] = Field(default=None, min_length=1, max_length=32)
    description: Optional[str] = None
    scope: Optional[PromotionScope] = None
    active: Optional[bool] = None
    apply_order: Optional[int] = None
    stackable: Optional[bool] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    days_of_week: Optional[List[int]] = None
    time_ranges: Optional[List[Dict[str, str]]] = None
    rule: Optional[Dict[str, Any]] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(default=None, ge=0)
    discount_target: Optional[DiscountTarget] = None
    max_amount: Optional[int] = Field(default=None, ge=0)


class PromotionResponse(PromotionBase):
    id: int
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PromotionActiveUpdate(BaseModel):
    active: bool


class PromotionOrderUpdate(BaseModel):
    apply_order: int


class DiscountLineResponse(BaseModel):
    name: str
    discount_type: str
    value: Decimal
    amount: int
    target: str
    promotion_id: Optional[int] = None
    meta: Dict[str, Any] = {}

    model_config = {"from_attributes": True}


class RemainingPoolsResponse(BaseModel):
    play: int
    service: int
    bill: int

    model_config = {"from_attributes": True}


class PromotionPreviewResponse(BaseModel):
    preview: ClosePreviewResponse
    lines: List[DiscountLineResponse]
    remaining: RemainingPoolsResponse
    discount_total: int
