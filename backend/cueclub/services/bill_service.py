"""Bill assembly and the bill read/patch side.

``BillAssembler`` turns a session, its minute result and the discount lines
into an unsaved ``Bill``. ``persist_bill`` inserts it under a savepoint and
retries on a bill-code collision. Once flushed, a bill only accepts payment
and note patches (see the flush hooks in ``cueclub.models.bill``).
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from cueclub.core.config import settings
from cueclub.models.bill import Bill, BillDiscount, PaymentMethod, PlayCharge, ProductCharge
from cueclub.models.promotion import DiscountTarget, DiscountType
from cueclub.models.session import PlaySession
from cueclub.services.errors import ConflictError, NotFoundError, ValidationFailure
from cueclub.services.minute_accountant import MinuteResult, compute_play_amount
from cueclub.services.promotion_service import DiscountLine, compute_discount_amount
from cueclub.services.time_utils import as_utc, to_venue_local, utcnow

logger = logging.getLogger(__name__)


def generate_bill_code(at: Optional[datetime] = None) -> str:
    """``B{YYYYMMDD}-{6 hex}`` using the venue-local date."""
    local = to_venue_local(at or utcnow())
    return f"B{local:%Y%m%d}-{secrets.token_hex(3).upper()}"


def resolve_manual_discounts(lines: Iterable[Dict[str, Any]], sub_total: int) -> List[DiscountLine]:
    """Turn caller-supplied discount lines into ``DiscountLine`` objects.

    A line without an ``amount`` is computed against the subtotal. Each
    line is clamped to what earlier lines left of the subtotal, so the stored
    amounts add up to the bill's ``discount_total``.
    """
    resolved = []
    remaining = max(0, sub_total)
    for raw in lines:
        try:
            discount_type = DiscountType(raw.get("discount_type") or DiscountType.FIXED)
        except ValueError:
            raise ValidationFailure("Unknown discount type", {"discount_type": raw.get("discount_type")})
        try:
            value = Decimal(str(raw.get("value") or 0))
        except InvalidOperation:
            raise ValidationFailure("Discount value must be a number", {"field": "value"})
        if value < 0:
            raise ValidationFailure("Discount value cannot be negative", {"field": "value"})

        amount = raw.get("amount")
        if amount is None:
            amount = compute_discount_amount(discount_type, value, sub_total)
        amount = min(max(0, int(amount)), remaining)
        remaining -= amount
        resolved.append(
            DiscountLine(
                name=raw.get("name") or "",
                discount_type=discount_type.value,
                value=value,
                amount=amount,
                target=DiscountTarget.BILL.value,
                meta=dict(raw.get("meta") or {}, source="manual"),
            )
        )
    return resolved


@dataclass
class PaymentInfo:
    paid: bool = True
    payment_method: PaymentMethod = PaymentMethod.CASH
    paid_at: Optional[datetime] = None


class BillAssembler:
    """Builds the bill for a session's final figures."""

    def assemble(
        self,
        session: PlaySession,
        minutes: MinuteResult,
        discount_lines: List[DiscountLine],
        surcharge: int = 0,
        payment: Optional[PaymentInfo] = None,
        staff_id: Optional[int] = None,
        code: Optional[str] = None,
        table_name: Optional[str] = None,
    ) -> Bill:
        payment = payment or PaymentInfo()
        snapshot = session.table_snapshot

        play_amount = compute_play_amount(snapshot.rate_per_hour, minutes.billable_minutes)
        items = [
            PlayCharge(
                position=0,
                minutes=minutes.billable_minutes,
                rate_per_hour=snapshot.rate_per_hour,
                amount=play_amount,
            )
        ]
        for position, item in enumerate(session.items, start=1):
            items.append(
                ProductCharge(
                    position=position,
                    product_id=item.product_id,
                    name_snapshot=item.name_snapshot,
                    price_snapshot=item.price_snapshot,
                    quantity=item.quantity,
                    amount=max(0, item.amount),
                    note=item.note or "",
                )
            )

        service_amount = sum(i.amount for i in items[1:])
        sub_total = play_amount + service_amount
        discount_total = min(sum(line.amount for line in discount_lines), sub_total)
        surcharge = max(0, int(surcharge or 0))
        total = max(0, sub_total - discount_total + surcharge)

        discounts = [
            BillDiscount(
                position=position,
                promotion_id=line.promotion_id,
                name=line.name,
                discount_type=line.discount_type,
                value=line.value,
                amount=line.amount,
                target=line.target,
                meta=line.meta or None,
            )
            for position, line in enumerate(discount_lines)
        ]

        paid_at = None
        if payment.paid:
            paid_at = as_utc(payment.paid_at) if payment.paid_at else utcnow()

        return Bill(
            code=(code or "").strip().upper() or None,
            session_id=session.id,
            table_id=session.table_id,
            table_name=table_name or snapshot.table_name,
            play_amount=play_amount,
            service_amount=service_amount,
            sub_total=sub_total,
            discount_total=discount_total,
            surcharge=surcharge,
            total=total,
            paid=payment.paid,
            payment_method=payment.payment_method,
            paid_at=paid_at,
            staff_id=staff_id,
            items=items,
            discounts=discounts,
        )


def persist_bill(db: Session, build: Callable[[], Bill], at: Optional[datetime] = None) -> Bill:
    """Insert the bill built by ``build`` inside a savepoint.

    When the bill carries no code one is generated; a collision on the code's
    unique index is retried with a fresh code up to
    ``settings.bill_code_max_attempts`` times. Any other integrity error is
    a conflict (for example a second bill for the same session).
    """
    attempts = max(1, settings.bill_code_max_attempts)
    for attempt in range(1, attempts + 1):
        bill = build()
        supplied_code = bill.code is not None
        if not supplied_code:
            bill.code = generate_bill_code(at)

        savepoint = db.begin_nested()
        try:
            db.add(bill)
            db.flush()
            savepoint.commit()
            return bill
        except IntegrityError:
            savepoint.rollback()
            code_taken = db.query(Bill.id).filter(Bill.code == bill.code).first() is not None
            if not code_taken:
                raise ConflictError("Bill could not be created", {"session_id": bill.session_id})
            if supplied_code:
                raise ConflictError("Bill code already exists", {"code": bill.code})
            logger.warning(
                "Bill code collision on %s (attempt %d/%d), retrying",
                bill.code,
                attempt,
                attempts,
            )

    raise ConflictError("Could not generate a unique bill code", {"attempts": attempts})


class BillService:
    """Read side and the payment/note patches allowed on issued bills."""

    def __init__(self, db: Session):
        self.db = db

    def _query(self):
        return self.db.query(Bill).options(selectinload(Bill.items), selectinload(Bill.discounts))

    def get(self, bill_id: int) -> Bill:
        bill = self._query().filter(Bill.id == bill_id).first()
        if not bill:
            raise NotFoundError("Bill not found", {"bill_id": bill_id})
        return bill

    def get_for_session(self, session_id: int) -> Bill:
        bill = self._query().filter(Bill.session_id == session_id).first()
        if not bill:
            raise NotFoundError("Bill not found for session", {"session_id": session_id})
        return bill

    def list(
        self,
        paid: Optional[bool] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        table_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Bill], int]:
        query = self._query()
        if paid is not None:
            query = query.filter(Bill.paid == paid)
        if table_id is not None:
            query = query.filter(Bill.table_id == table_id)
        if date_from is not None:
            query = query.filter(Bill.created_at >= as_utc(date_from))
        if date_to is not None:
            query = query.filter(Bill.created_at <= as_utc(date_to))

        total = query.count()
        bills = query.order_by(Bill.created_at.desc(), Bill.id.desc()).offset(skip).limit(limit).all()
        return bills, total

    def pay(self, bill_id: int, payment_method: PaymentMethod, paid_at: Optional[datetime] = None) -> Bill:
        bill = self.get(bill_id)
        if bill.paid:
            raise ConflictError("Bill is already paid", {"bill_id": bill_id})

        bill.paid = True
        bill.payment_method = PaymentMethod(payment_method)
        bill.paid_at = as_utc(paid_at) if paid_at else utcnow()
        self.db.commit()
        self.db.refresh(bill)
        logger.info("Bill %s paid by %s, total=%d", bill.code, bill.payment_method.value, bill.total)
        return bill

    def set_note(self, bill_id: int, note: str) -> Bill:
        bill = self.get(bill_id)
        bill.note = (note or "").strip()
        self.db.commit()
        self.db.refresh(bill)
        return bill
