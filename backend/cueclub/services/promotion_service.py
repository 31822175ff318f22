"""Promotion engine and promotion management.

``apply_promotions`` is pure: it takes a billing context and a list of
promotions and returns discount lines plus the remaining per-target pools.
Nothing here touches the database except ``PromotionService``.

Evaluation:
1. Three independent pools (play, service, bill) start at their charges.
2. Promotions that are inactive or outside their validity window are dropped.
3. The rest run in ascending ``apply_order`` (ties keep input order). Each
   eligible promotion discounts its target pool; a zero amount emits nothing.
4. A non-stackable promotion that applies ends the discount phase.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy import or_
from sqlalchemy.orm import Session

from cueclub.models.promotion import (
    DiscountTarget,
    DiscountType,
    ProductRule,
    Promotion,
    PromotionScope,
    PromotionView,
    parse_rule,
)
from cueclub.models.validators import validate_time_windows, validate_weekdays
from cueclub.services.errors import ConflictError, NotFoundError, ValidationFailure
from cueclub.services.time_utils import in_time_window, minute_of_day, to_venue_local, weekday_sun0

logger = logging.getLogger(__name__)


# ============== Engine types ==============


@dataclass(frozen=True)
class ServiceLine:
    """A consumed product as the engine sees it."""

    product_id: Optional[int]
    category_id: Optional[int]
    quantity: int
    amount: int


@dataclass
class BillingContext:
    at: datetime
    table_type_id: Optional[int]
    billable_minutes: int
    play_amount: int
    service_items: List[ServiceLine] = field(default_factory=list)
    service_amount: int = 0
    sub_total: int = 0


@dataclass
class DiscountLine:
    name: str
    discount_type: str
    value: Decimal
    amount: int
    target: str = DiscountTarget.BILL.value
    promotion_id: Optional[int] = None
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RemainingPools:
    play: int
    service: int
    bill: int

    def get(self, target: DiscountTarget) -> int:
        return getattr(self, target.value)

    def deduct(self, target: DiscountTarget, amount: int) -> None:
        setattr(self, target.value, max(0, self.get(target) - amount))


@dataclass
class PromotionResult:
    lines: List[DiscountLine]
    remaining: RemainingPools

    @property
    def discount_total(self) -> int:
        return sum(line.amount for line in self.lines)


# ============== Engine ==============


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def is_effective_at(promo: PromotionView, at: datetime) -> bool:
    """Active flag plus date range, weekday set and intraday windows."""
    if not promo.active:
        return False

    local = to_venue_local(at)
    today = local.date()
    if promo.valid_from and today < promo.valid_from:
        return False
    if promo.valid_to and today > promo.valid_to:
        return False

    if promo.days_of_week and weekday_sun0(local) not in promo.days_of_week:
        return False

    if promo.time_ranges:
        minute = minute_of_day(local)
        if not any(in_time_window(minute, r["from"], r["to"]) for r in promo.time_ranges):
            return False

    return True


def compute_discount_amount(
    discount_type: DiscountType,
    value: Decimal,
    base: int,
    max_amount: Optional[int] = None,
) -> int:
    """Discount for ``base``, always within ``[0, base]``."""
    if base <= 0:
        return 0
    value = Decimal(str(value or 0))
    if discount_type == DiscountType.PERCENT:
        pct = min(max(value, Decimal(0)), Decimal(100))
        amount = _round_half_up(Decimal(base) * pct / Decimal(100))
    else:
        amount = _round_half_up(value)
    if max_amount is not None:
        amount = min(amount, max(0, int(max_amount)))
    return min(max(amount, 0), base)


def _matches_table_type(table_type_ids: Tuple[int, ...], table_type_id: Optional[int]) -> bool:
    return not table_type_ids or table_type_id in table_type_ids


def _product_base(rule: ProductRule, items: List[ServiceLine]) -> int:
    """Sum of matched line amounts; 0 if a combo requirement is not met."""
    if rule.combo:
        quantities: Dict[int, int] = {}
        for item in items:
            if item.product_id is not None:
                quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity
        if any(quantities.get(req.product_id, 0) < req.qty for req in rule.combo):
            return 0

    total = 0
    for item in items:
        if rule.product_ids and item.product_id not in rule.product_ids:
            continue
        if rule.category_ids and item.category_id not in rule.category_ids:
            continue
        total += item.amount
    return total


def _eligible_base(
    promo: PromotionView, context: BillingContext, pool: int
) -> Tuple[Optional[int], Dict[str, Any]]:
    """Eligible base for ``promo`` or None when its rule does not match."""
    rule = promo.rule
    meta: Dict[str, Any] = {"promotion_id": promo.id, "code": promo.code, "scope": promo.scope.value}

    if promo.scope == PromotionScope.TIME:
        if not _matches_table_type(rule.table_type_ids, context.table_type_id):
            return None, meta
        if context.billable_minutes < rule.min_minutes:
            return None, meta
        meta["min_minutes"] = rule.min_minutes
        return pool, meta

    if promo.scope == PromotionScope.PRODUCT:
        if promo.discount_target == DiscountTarget.PLAY:
            return None, meta
        matched = _product_base(rule, context.service_items)
        if matched <= 0:
            return None, meta
        meta["eligible_service_base"] = matched
        return min(pool, matched), meta

    if not _matches_table_type(rule.table_type_ids, context.table_type_id):
        return None, meta
    if context.sub_total < rule.min_subtotal:
        return None, meta
    if context.service_amount < rule.min_service_amount:
        return None, meta
    if context.billable_minutes < rule.min_play_minutes:
        return None, meta
    return pool, meta


def apply_promotions(
    context: BillingContext,
    promotions: Iterable[Union[PromotionView, Promotion]],
) -> PromotionResult:
    remaining = RemainingPools(
        play=max(0, int(context.play_amount)),
        service=max(0, int(context.service_amount)),
        bill=max(0, int(context.sub_total)),
    )
    views = [p if isinstance(p, PromotionView) else PromotionView.from_model(p) for p in promotions]
    candidates = sorted(
        (p for p in views if is_effective_at(p, context.at)),
        key=lambda p: p.apply_order,
    )

    lines: List[DiscountLine] = []
    for promo in candidates:
        target = DiscountTarget(promo.discount_target)
        base, meta = _eligible_base(promo, context, remaining.get(target))
        if base is None or base <= 0:
            continue

        amount = compute_discount_amount(promo.discount_type, promo.discount_value, base, promo.max_amount)
        if amount <= 0:
            continue

        remaining.deduct(target, amount)
        lines.append(
            DiscountLine(
                name=promo.name,
                discount_type=promo.discount_type.value,
                value=promo.discount_value,
                amount=amount,
                target=target.value,
                promotion_id=promo.id,
                meta=meta,
            )
        )

        if not promo.stackable:
            break

    return PromotionResult(lines=lines, remaining=remaining)


# ============== Management ==============

_EDITABLE_FIELDS = (
    "name",
    "code",
    "description",
    "scope",
    "active",
    "apply_order",
    "stackable",
    "valid_from",
    "valid_to",
    "days_of_week",
    "time_ranges",
    "rule",
    "discount_type",
    "discount_value",
    "discount_target",
    "max_amount",
)


class PromotionService:
    """CRUD and loading of promotions."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, promotion_id: int) -> Promotion:
        promo = self.db.get(Promotion, promotion_id)
        if not promo:
            raise NotFoundError("Promotion not found", {"promotion_id": promotion_id})
        return promo

    def list(
        self,
        scope: Optional[PromotionScope] = None,
        active: Optional[bool] = None,
        effective_at: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Promotion], int]:
        query = self.db.query(Promotion)
        if scope is not None:
            query = query.filter(Promotion.scope == PromotionScope(scope))
        if active is not None:
            query = query.filter(Promotion.active == active)
        query = query.order_by(Promotion.apply_order.asc(), Promotion.id.asc())

        if effective_at is not None:
            rows = [p for p in query.all() if is_effective_at(PromotionView.from_model(p), effective_at)]
            return rows[skip:skip + limit], len(rows)

        total = query.count()
        return query.offset(skip).limit(limit).all(), total

    def load_effective(self, at: datetime) -> List[PromotionView]:
        """Active promotions in evaluation order, coarse-filtered by date."""
        today = to_venue_local(at).date()
        rows = (
            self.db.query(Promotion)
            .filter(
                Promotion.active.is_(True),
                or_(Promotion.valid_from.is_(None), Promotion.valid_from <= today),
                or_(Promotion.valid_to.is_(None), Promotion.valid_to >= today),
            )
            .order_by(Promotion.apply_order.asc(), Promotion.id.asc())
            .all()
        )
        return [PromotionView.from_model(p) for p in rows]

    def create(self, data: Dict[str, Any]) -> Promotion:
        values = {key: data[key] for key in _EDITABLE_FIELDS if key in data}
        self._validate(values)
        self._ensure_code_free(values["code"])

        promo = Promotion()
        self._assign(promo, values)
        self.db.add(promo)
        self.db.commit()
        self.db.refresh(promo)
        logger.info("Promotion %s (%s) created, scope=%s", promo.id, promo.code, promo.scope.value)
        return promo

    def update(self, promotion_id: int, data: Dict[str, Any]) -> Promotion:
        promo = self.get(promotion_id)
        merged = {key: getattr(promo, key) for key in _EDITABLE_FIELDS}
        changes = {key: data[key] for key in _EDITABLE_FIELDS if key in data}
        merged.update(changes)
        self._validate(merged)
        if "code" in changes and changes["code"].strip().upper() != promo.code:
            self._ensure_code_free(changes["code"])

        self._assign(promo, changes)
        self.db.commit()
        self.db.refresh(promo)
        logger.info("Promotion %s updated: %s", promo.id, sorted(changes))
        return promo

    def set_active(self, promotion_id: int, active: bool) -> Promotion:
        promo = self.get(promotion_id)
        promo.active = active
        self.db.commit()
        self.db.refresh(promo)
        return promo

    def set_apply_order(self, promotion_id: int, apply_order: int) -> Promotion:
        promo = self.get(promotion_id)
        promo.apply_order = apply_order
        self.db.commit()
        self.db.refresh(promo)
        return promo

    def delete(self, promotion_id: int) -> None:
        promo = self.get(promotion_id)
        self.db.delete(promo)
        self.db.commit()
        logger.info("Promotion %s deleted", promotion_id)

    # ----- helpers -----

    def _ensure_code_free(self, code: str) -> None:
        normalized = (code or "").strip().upper()
        if self.db.query(Promotion.id).filter(Promotion.code == normalized).first():
            raise ConflictError("Promotion code already exists", {"code": normalized})

    def _assign(self, promo: Promotion, values: Dict[str, Any]) -> None:
        try:
            for key, value in values.items():
                setattr(promo, key, value)
        except ValueError as exc:
            raise ValidationFailure(str(exc))

    @staticmethod
    def _validate(values: Dict[str, Any]) -> None:
        for required in ("name", "code", "scope", "discount_type", "discount_value"):
            if values.get(required) in (None, ""):
                raise ValidationFailure(f"{required} is required", {"field": required})

        try:
            scope = PromotionScope(values["scope"])
        except ValueError:
            raise ValidationFailure("Unknown promotion scope", {"field": "scope", "value": values["scope"]})
        parse_rule(scope, values.get("rule"))

        try:
            validate_weekdays("days_of_week", values.get("days_of_week") or [])
            validate_time_windows("time_ranges", values.get("time_ranges") or [])
        except ValueError as exc:
            raise ValidationFailure(str(exc))

        try:
            discount_type = DiscountType(values["discount_type"])
        except ValueError:
            raise ValidationFailure(
                "Unknown discount type", {"field": "discount_type", "value": values["discount_type"]}
            )
        try:
            value = Decimal(str(values["discount_value"]))
        except InvalidOperation:
            raise ValidationFailure("discount_value must be a number", {"field": "discount_value"})
        if value < 0:
            raise ValidationFailure("discount_value cannot be negative", {"field": "discount_value"})
        if discount_type == DiscountType.PERCENT and value > 100:
            raise ValidationFailure("percent discount must be within 0..100", {"field": "discount_value"})

        max_amount = values.get("max_amount")
        if max_amount is not None and max_amount < 0:
            raise ValidationFailure("max_amount cannot be negative", {"field": "max_amount"})

        valid_from: Optional[date] = values.get("valid_from")
        valid_to: Optional[date] = values.get("valid_to")
        if valid_from and valid_to and valid_from > valid_to:
            raise ValidationFailure("valid_from must not be after valid_to", {"field": "valid_from"})

        try:
            target = DiscountTarget(values.get("discount_target") or DiscountTarget.BILL)
        except ValueError:
            raise ValidationFailure(
                "Unknown discount target", {"field": "discount_target", "value": values.get("discount_target")}
            )
        if scope == PromotionScope.PRODUCT and target == DiscountTarget.PLAY:
            raise ValidationFailure(
                "product-scoped promotions may only target service or bill",
                {"field": "discount_target"},
            )
