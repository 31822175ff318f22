"""Promotion rules evaluated at checkout.

A promotion belongs to exactly one scope and carries one rule payload for
that scope, stored as JSON in ``rule`` and parsed into ``TimeRule``,
``ProductRule`` or ``BillRule``. The time-validity gate (date range, days of
week, intraday windows) is shared by all scopes.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import Boolean, Date, Index, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, validates

from cueclub.db.base import Base, TimestampMixin, value_enum
from cueclub.models.validators import non_negative, validate_time_windows, validate_weekdays
from cueclub.services.errors import ValidationFailure


class PromotionScope(str, enum.Enum):
    TIME = "time"
    PRODUCT = "product"
    BILL = "bill"


class DiscountType(str, enum.Enum):
    PERCENT = "percent"
    FIXED = "fixed"


class DiscountTarget(str, enum.Enum):
    """Which remaining pool a discount draws from."""

    PLAY = "play"
    SERVICE = "service"
    BILL = "bill"


@dataclass(frozen=True)
class ComboRequirement:
    product_id: int
    qty: int = 1


@dataclass(frozen=True)
class TimeRule:
    table_type_ids: tuple = ()
    min_minutes: int = 0


@dataclass(frozen=True)
class ProductRule:
    category_ids: tuple = ()
    product_ids: tuple = ()
    combo: tuple = ()


@dataclass(frozen=True)
class BillRule:
    min_subtotal: int = 0
    min_service_amount: int = 0
    min_play_minutes: int = 0
    table_type_ids: tuple = ()


PromotionRule = Union[TimeRule, ProductRule, BillRule]

_RULE_KEYS = {
    PromotionScope.TIME: {"table_type_ids", "min_minutes"},
    PromotionScope.PRODUCT: {"category_ids", "product_ids", "combo"},
    PromotionScope.BILL: {"min_subtotal", "min_service_amount", "min_play_minutes", "table_type_ids"},
}


def _id_tuple(payload: dict, key: str) -> tuple:
    raw = payload.get(key) or []
    if not isinstance(raw, (list, tuple)):
        raise ValidationFailure(f"rule.{key} must be a list", {"field": f"rule.{key}"})
    try:
        return tuple(int(v) for v in raw)
    except (TypeError, ValueError):
        raise ValidationFailure(f"rule.{key} must contain ids", {"field": f"rule.{key}"})


def _min_value(payload: dict, key: str) -> int:
    try:
        value = int(payload.get(key) or 0)
    except (TypeError, ValueError):
        raise ValidationFailure(f"rule.{key} must be an integer", {"field": f"rule.{key}"})
    if value < 0:
        raise ValidationFailure(f"rule.{key} cannot be negative", {"field": f"rule.{key}"})
    return value


def parse_rule(scope: Union[PromotionScope, str], payload: Optional[dict]) -> PromotionRule:
    """Parse a stored rule payload into the dataclass for ``scope``.

    Raises ValidationFailure when the payload carries keys that belong to a
    different scope or values of the wrong shape.
    """
    scope = PromotionScope(scope)
    payload = payload or {}
    if not isinstance(payload, dict):
        raise ValidationFailure("rule must be an object", {"field": "rule"})

    unknown = set(payload) - _RULE_KEYS[scope]
    if unknown:
        raise ValidationFailure(
            f"rule keys {sorted(unknown)} do not apply to scope '{scope.value}'",
            {"field": "rule", "scope": scope.value},
        )

    if scope == PromotionScope.TIME:
        return TimeRule(
            table_type_ids=_id_tuple(payload, "table_type_ids"),
            min_minutes=_min_value(payload, "min_minutes"),
        )

    if scope == PromotionScope.PRODUCT:
        combo = []
        for entry in payload.get("combo") or []:
            if not isinstance(entry, dict) or "product_id" not in entry:
                raise ValidationFailure("rule.combo entries need a product_id", {"field": "rule.combo"})
            qty = int(entry.get("qty") or 1)
            if qty < 1:
                raise ValidationFailure("rule.combo qty must be at least 1", {"field": "rule.combo"})
            combo.append(ComboRequirement(product_id=int(entry["product_id"]), qty=qty))
        return ProductRule(
            category_ids=_id_tuple(payload, "category_ids"),
            product_ids=_id_tuple(payload, "product_ids"),
            combo=tuple(combo),
        )

    return BillRule(
        min_subtotal=_min_value(payload, "min_subtotal"),
        min_service_amount=_min_value(payload, "min_service_amount"),
        min_play_minutes=_min_value(payload, "min_play_minutes"),
        table_type_ids=_id_tuple(payload, "table_type_ids"),
    )


class Promotion(Base, TimestampMixin):
    """A discount offer with its eligibility rule and discount definition."""

    __tablename__ = "promotions"
    __table_args__ = (
        Index("idx_promotions_active_order", "active", "apply_order"),
        Index("idx_promotions_validity", "valid_from", "valid_to"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    scope: Mapped[PromotionScope] = mapped_column(
        value_enum(PromotionScope, length=8), nullable=False, index=True
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    apply_order: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    stackable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Validity gate; valid_to is inclusive through the end of that day
    valid_from: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    valid_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    days_of_week: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    time_ranges: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    rule: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    discount_type: Mapped[DiscountType] = mapped_column(value_enum(DiscountType, length=8), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount_target: Mapped[DiscountTarget] = mapped_column(
        value_enum(DiscountTarget, length=8), default=DiscountTarget.BILL, nullable=False
    )
    max_amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    @validates("code")
    def _normalize_code(self, key, value):
        return (value or "").strip().upper()

    @validates("days_of_week")
    def _validate_days(self, key, value):
        return validate_weekdays(key, value)

    @validates("time_ranges")
    def _validate_ranges(self, key, value):
        return validate_time_windows(key, value)

    @validates("discount_value", "max_amount")
    def _validate_amounts(self, key, value):
        return non_negative(key, value)

    @property
    def parsed_rule(self) -> PromotionRule:
        return parse_rule(self.scope, self.rule)


@dataclass
class PromotionView:
    """Detached, read-only copy of a promotion for the pure engine."""

    id: Optional[int]
    name: str
    scope: PromotionScope
    discount_type: DiscountType
    discount_value: Decimal
    discount_target: DiscountTarget = DiscountTarget.BILL
    max_amount: Optional[int] = None
    stackable: bool = True
    active: bool = True
    apply_order: int = 100
    code: str = ""
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    days_of_week: list = field(default_factory=list)
    time_ranges: list = field(default_factory=list)
    rule: PromotionRule = field(default_factory=TimeRule)

    @classmethod
    def from_model(cls, promo: Promotion) -> "PromotionView":
        return cls(
            id=promo.id,
            name=promo.name,
            code=promo.code,
            scope=PromotionScope(promo.scope),
            discount_type=DiscountType(promo.discount_type),
            discount_value=Decimal(str(promo.discount_value)),
            discount_target=DiscountTarget(promo.discount_target),
            max_amount=promo.max_amount,
            stackable=promo.stackable,
            active=promo.active,
            apply_order=promo.apply_order,
            valid_from=promo.valid_from,
            valid_to=promo.valid_to,
            days_of_week=list(promo.days_of_week or []),
            time_ranges=list(promo.time_ranges or []),
            rule=promo.parsed_rule,
        )
