"""Session state machine: check-in, items, preview, checkout, void, transfer.

Lifecycle::

    open --checkout--> closed   (produces exactly one Bill)
    open --void------> void     (no Bill)

Pricing is frozen at check-in: the table's resolved hourly rate goes into
``PlaySession.table_snapshot`` and the venue rounding rule into
``PlaySession.rounding_policy``. Neither is re-read afterwards.

Consistency:
- At most one open session per table is enforced by the partial unique index
  ``uq_play_sessions_open_table``; a violation becomes ConflictError.
- Checkout writes the bill, closes the session and frees the table in one
  transaction. Any failure rolls all three back.
- Checkout, void and transfer update the row only while its status is still
  open; a request acting on a stale read gets ConflictError.
- Transfer restores both tables' previous statuses if persisting fails.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from cueclub.core.config import settings
from cueclub.models.bill import Bill, PaymentMethod
from cueclub.models.catalog import Product, Table, TableStatus
from cueclub.models.session import PlaySession, SessionItem, SessionStatus
from cueclub.models.setting import VenueSetting
from cueclub.models.snapshots import RoundingMode
from cueclub.services.bill_service import BillAssembler, PaymentInfo, persist_bill, resolve_manual_discounts
from cueclub.services.errors import (
    BillingError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationFailure,
)
from cueclub.services.minute_accountant import MinuteResult, compute_minutes, compute_play_amount
from cueclub.services.promotion_service import (
    BillingContext,
    PromotionResult,
    PromotionService,
    ServiceLine,
    apply_promotions,
)
from cueclub.services.rate_resolver import build_table_snapshot, resolve_rate
from cueclub.services.time_utils import as_utc, to_venue_local, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClosePreview:
    raw_minutes: int
    billable_minutes: int
    rate_per_hour: int
    play_amount: int
    service_amount: int
    sub_total: int
    end_at: datetime


class SessionService:
    """Owns the lifecycle of table-occupancy sessions."""

    def __init__(self, db: Session):
        self.db = db
        self.assembler = BillAssembler()

    # ===== Venue billing settings =====

    def get_active_setting(self) -> VenueSetting:
        """Saved venue setting, or an unsaved one built from config defaults."""
        setting = self.db.query(VenueSetting).order_by(VenueSetting.id.asc()).first()
        if setting:
            return setting
        return VenueSetting(
            rounding_step=settings.default_rounding_step,
            rounding_mode=RoundingMode(settings.default_rounding_mode),
            grace_minutes=settings.default_grace_minutes,
        )

    def update_billing_settings(
        self,
        rounding_step: Optional[int] = None,
        rounding_mode: Optional[RoundingMode] = None,
        grace_minutes: Optional[int] = None,
        updated_by: Optional[int] = None,
    ) -> VenueSetting:
        """Only sessions opened after this call see the new rule."""
        setting = self.get_active_setting()
        if setting.id is None:
            self.db.add(setting)
        try:
            if rounding_step is not None:
                setting.rounding_step = rounding_step
            if rounding_mode is not None:
                setting.rounding_mode = RoundingMode(rounding_mode)
            if grace_minutes is not None:
                setting.grace_minutes = grace_minutes
        except ValueError as exc:
            self.db.rollback()
            raise ValidationFailure(str(exc))
        setting.updated_by = updated_by
        self.db.commit()
        self.db.refresh(setting)
        logger.info(
            "Billing settings updated: step=%s mode=%s grace=%s",
            setting.rounding_step,
            setting.rounding_mode.value,
            setting.grace_minutes,
        )
        return setting

    # ===== Read side =====

    def get(self, session_id: int) -> PlaySession:
        session = (
            self.db.query(PlaySession)
            .options(selectinload(PlaySession.items))
            .filter(PlaySession.id == session_id)
            .first()
        )
        if not session:
            raise NotFoundError("Session not found", {"session_id": session_id})
        return session

    def list(
        self,
        status: Optional[SessionStatus] = None,
        table_id: Optional[int] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[PlaySession], int]:
        query = self.db.query(PlaySession).options(selectinload(PlaySession.items))
        if status is not None:
            query = query.filter(PlaySession.status == SessionStatus(status))
        if table_id is not None:
            query = query.filter(PlaySession.table_id == table_id)
        if date_from is not None:
            query = query.filter(PlaySession.start_time >= as_utc(date_from))
        if date_to is not None:
            query = query.filter(PlaySession.start_time <= as_utc(date_to))

        total = query.count()
        rows = (
            query.order_by(PlaySession.start_time.desc(), PlaySession.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return rows, total

    def _open_session_for_table(self, table_id: int) -> Optional[PlaySession]:
        return (
            self.db.query(PlaySession)
            .filter(PlaySession.table_id == table_id, PlaySession.status == SessionStatus.OPEN)
            .first()
        )

    def _get_open(self, session_id: int) -> PlaySession:
        session = self.get(session_id)
        if session.status != SessionStatus.OPEN:
            raise InvalidStateError(
                "Session is not open",
                {"session_id": session_id, "status": session.status.value},
            )
        return session

    def _get_for_transition(self, session_id: int) -> PlaySession:
        session = self.get(session_id)
        if session.status != SessionStatus.OPEN:
            raise ConflictError(
                "Session is already closed or void",
                {"session_id": session_id, "status": session.status.value},
            )
        return session

    def _claim_open_row(self, session_id: int, values: Dict[Any, Any]) -> None:
        """Apply ``values`` with ``WHERE status = 'open'`` in the current transaction.

        Zero matched rows means another request ended the session after it
        was read here.
        """
        updated = (
            self.db.query(PlaySession)
            .filter(PlaySession.id == session_id, PlaySession.status == SessionStatus.OPEN)
            .update(values, synchronize_session=False)
        )
        if not updated:
            self.db.rollback()
            logger.warning("Session %s was ended concurrently; transition rejected", session_id)
            raise ConflictError("Session is already closed or void", {"session_id": session_id})

    # ===== Check-in =====

    def _next_session_code(self, at: datetime, offset: int = 0) -> str:
        prefix = f"SES-{to_venue_local(at):%Y%m%d}-"
        count = (
            self.db.query(func.count(PlaySession.id))
            .filter(PlaySession.code.like(f"{prefix}%"))
            .scalar()
        )
        return f"{prefix}{count + 1 + offset:04d}"

    def open_session(
        self,
        table_id: int,
        staff_id: Optional[int] = None,
        start_at: Optional[datetime] = None,
    ) -> PlaySession:
        table = self.db.get(Table, table_id)
        if not table:
            raise NotFoundError("Table not found", {"table_id": table_id})
        if not table.active:
            raise ConflictError("Table is inactive", {"table_id": table_id})
        if table.status == TableStatus.MAINTENANCE:
            raise ConflictError("Table is under maintenance", {"table_id": table_id})
        if self._open_session_for_table(table_id):
            raise ConflictError("Table already has an open session", {"table_id": table_id})

        start = as_utc(start_at) if start_at else utcnow()
        table_snapshot = build_table_snapshot(table, table.table_type, start)
        policy = self.get_active_setting().policy_snapshot()

        attempts = max(1, settings.bill_code_max_attempts)
        for attempt in range(attempts):
            session = PlaySession(
                code=self._next_session_code(start, attempt),
                table_id=table.id,
                table_snapshot=table_snapshot,
                rounding_policy=policy,
                start_time=start,
                status=SessionStatus.OPEN,
                opened_by=staff_id,
                note="",
            )
            savepoint = self.db.begin_nested()
            try:
                self.db.add(session)
                self.db.flush()
                savepoint.commit()
                break
            except IntegrityError:
                savepoint.rollback()
                if self._open_session_for_table(table_id):
                    logger.warning(
                        "Occupancy lock rejected check-in on table %s (concurrent open)", table_id
                    )
                    raise ConflictError("Table already has an open session", {"table_id": table_id})
                logger.warning("Session code %s already taken, retrying", session.code)
        else:
            raise ConflictError("Could not allocate a session code", {"table_id": table_id})

        table.status = TableStatus.PLAYING
        self.db.commit()
        self.db.refresh(session)
        logger.info(
            "Session %s opened on table %s at rate %d/h (%s)",
            session.code,
            table.name,
            table_snapshot.rate_per_hour,
            table_snapshot.rate_source,
        )
        return session

    # ===== Items =====

    def add_item(
        self,
        session_id: int,
        product_id: int,
        qty: int = 1,
        note: Optional[str] = None,
    ) -> PlaySession:
        if qty is None or qty <= 0:
            raise ValidationFailure("Quantity must be at least 1", {"field": "qty", "value": qty})

        session = self._get_open(session_id)
        product = self.db.get(Product, product_id)
        if not product or not product.active:
            raise NotFoundError("Product not found or inactive", {"product_id": product_id})

        existing = session.find_item_for_product(product.id)
        if existing:
            existing.quantity += qty
            if note:
                existing.note = note
        else:
            session.items.append(
                SessionItem(
                    product_id=product.id,
                    category_id=product.category_id,
                    name_snapshot=product.name,
                    price_snapshot=product.price,
                    quantity=qty,
                    note=note or "",
                )
            )
        self.db.commit()
        self.db.refresh(session)
        return session

    def update_item_qty(self, session_id: int, item_id: int, qty: int) -> PlaySession:
        """Set an item's quantity; zero or less removes the row."""
        session = self._get_open(session_id)
        item = session.find_item(item_id)
        if not item:
            raise NotFoundError("Item not found", {"session_id": session_id, "item_id": item_id})

        if qty <= 0:
            session.items.remove(item)
        else:
            item.quantity = qty
        self.db.commit()
        self.db.refresh(session)
        return session

    def remove_item(self, session_id: int, item_id: int) -> PlaySession:
        session = self._get_open(session_id)
        item = session.find_item(item_id)
        if not item:
            raise NotFoundError("Item not found", {"session_id": session_id, "item_id": item_id})

        session.items.remove(item)
        self.db.commit()
        self.db.refresh(session)
        return session

    # ===== Preview =====

    def _compute(self, session: PlaySession, end: datetime) -> Tuple[MinuteResult, ClosePreview]:
        minutes = compute_minutes(session.start_time, end, session.rounding_policy)
        rate = session.table_snapshot.rate_per_hour
        play_amount = compute_play_amount(rate, minutes.billable_minutes)
        service_amount = session.service_amount
        preview = ClosePreview(
            raw_minutes=minutes.raw_minutes,
            billable_minutes=minutes.billable_minutes,
            rate_per_hour=rate,
            play_amount=play_amount,
            service_amount=service_amount,
            sub_total=play_amount + service_amount,
            end_at=end,
        )
        return minutes, preview

    def _billing_context(self, session: PlaySession, preview: ClosePreview) -> BillingContext:
        return BillingContext(
            at=preview.end_at,
            table_type_id=session.table_snapshot.table_type_id,
            billable_minutes=preview.billable_minutes,
            play_amount=preview.play_amount,
            service_items=[
                ServiceLine(
                    product_id=item.product_id,
                    category_id=item.category_id,
                    quantity=item.quantity,
                    amount=item.amount,
                )
                for item in session.items
            ],
            service_amount=preview.service_amount,
            sub_total=preview.sub_total,
        )

    def preview_close(self, session_id: int, end_at: Optional[datetime] = None) -> ClosePreview:
        """Projected charges at ``end_at`` (default now). Read-only."""
        session = self._get_open(session_id)
        end = as_utc(end_at) if end_at else utcnow()
        _, preview = self._compute(session, end)
        return preview

    def preview_promotions(
        self, session_id: int, end_at: Optional[datetime] = None
    ) -> Tuple[ClosePreview, PromotionResult]:
        """Discounts the engine would apply if the session closed at ``end_at``."""
        session = self._get_open(session_id)
        end = as_utc(end_at) if end_at else utcnow()
        _, preview = self._compute(session, end)
        promotions = PromotionService(self.db).load_effective(end)
        return preview, apply_promotions(self._billing_context(session, preview), promotions)

    # ===== Checkout =====

    def checkout(
        self,
        session_id: int,
        staff_id: Optional[int] = None,
        end_at: Optional[datetime] = None,
        discount_lines: Optional[List[Dict[str, Any]]] = None,
        surcharge: int = 0,
        payment_method: PaymentMethod = PaymentMethod.CASH,
        paid: bool = True,
        code: Optional[str] = None,
    ) -> Tuple[PlaySession, Bill]:
        """Close the session and issue its bill atomically.

        ``discount_lines=None`` runs the promotion engine against the
        promotions effective at ``end_at``; a list (possibly empty) is used
        as given instead.
        """
        session = self._get_for_transition(session_id)
        if surcharge is not None and surcharge < 0:
            raise ValidationFailure("Surcharge cannot be negative", {"field": "surcharge"})

        end = as_utc(end_at) if end_at else utcnow()
        minutes, preview = self._compute(session, end)

        if discount_lines is None:
            promotions = PromotionService(self.db).load_effective(end)
            lines = apply_promotions(self._billing_context(session, preview), promotions).lines
        else:
            lines = resolve_manual_discounts(discount_lines, preview.sub_total)

        payment = PaymentInfo(paid=paid, payment_method=PaymentMethod(payment_method))
        table = self.db.get(Table, session.table_id)

        try:
            self._claim_open_row(session_id, {PlaySession.status: SessionStatus.CLOSED})
            bill = persist_bill(
                self.db,
                lambda: self.assembler.assemble(
                    session,
                    minutes,
                    lines,
                    surcharge=surcharge or 0,
                    payment=payment,
                    staff_id=staff_id or session.opened_by,
                    code=code,
                    table_name=table.name if table else None,
                ),
                at=end,
            )

            session.status = SessionStatus.CLOSED
            session.end_time = end
            session.duration_minutes = minutes.billable_minutes
            session.closed_by = staff_id or session.opened_by
            if table:
                table.status = TableStatus.AVAILABLE
            self.db.commit()
        except BillingError:
            self.db.rollback()
            raise
        except Exception:
            logger.error("Checkout of session %s failed; rolled back", session_id, exc_info=True)
            self.db.rollback()
            raise

        self.db.refresh(session)
        self.db.refresh(bill)
        logger.info(
            "Session %s closed: %d min, play=%d service=%d discount=%d total=%d (bill %s)",
            session.code,
            minutes.billable_minutes,
            bill.play_amount,
            bill.service_amount,
            bill.discount_total,
            bill.total,
            bill.code,
        )
        return session, bill

    # ===== Void =====

    def void_session(
        self, session_id: int, reason: str, staff_id: Optional[int] = None
    ) -> PlaySession:
        session = self._get_for_transition(session_id)
        reason = (reason or "").strip()
        if not reason:
            raise ValidationFailure("A void reason is required", {"field": "reason"})

        self._claim_open_row(session_id, {PlaySession.status: SessionStatus.VOID})
        session.status = SessionStatus.VOID
        session.void_reason = reason
        session.end_time = utcnow()
        session.closed_by = staff_id
        table = self.db.get(Table, session.table_id)
        if table:
            table.status = TableStatus.AVAILABLE
        self.db.commit()
        self.db.refresh(session)
        logger.info("Session %s voided on table %s: %s", session.code, session.table_id, reason)
        return session

    # ===== Transfer =====

    def transfer_session(
        self, session_id: int, to_table_id: int, note: Optional[str] = None
    ) -> PlaySession:
        """Move an open session to another table with the same hourly rate."""
        session = self._get_for_transition(session_id)
        if session.table_id == to_table_id:
            return session

        from_table = self.db.get(Table, session.table_id)
        to_table = self.db.get(Table, to_table_id)
        if not from_table:
            raise NotFoundError("Source table not found", {"table_id": session.table_id})
        if not to_table:
            raise NotFoundError("Destination table not found", {"table_id": to_table_id})
        if not to_table.active:
            raise ConflictError("Destination table is inactive", {"table_id": to_table_id})
        if to_table.status != TableStatus.AVAILABLE:
            raise ConflictError(
                "Destination table is not available",
                {"table_id": to_table_id, "status": to_table.status.value},
            )
        if self._open_session_for_table(to_table_id):
            raise ConflictError("Destination table already has an open session", {"table_id": to_table_id})

        current_rate = session.table_snapshot.rate_per_hour
        next_rate = resolve_rate(to_table, to_table.table_type, utcnow()).rate_per_hour
        if current_rate != next_rate:
            raise ConflictError(
                "Destination table has a different hourly rate",
                {"current_rate": current_rate, "destination_rate": next_rate},
            )

        previous = {from_table.id: from_table.status, to_table.id: to_table.status}
        line = f"Moved from {from_table.name} -> {to_table.name}."
        if note and note.strip():
            line = f"{line} {note.strip()}"

        try:
            self._claim_open_row(session_id, {PlaySession.table_id: to_table_id})
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Destination table already has an open session", {"table_id": to_table_id})

        try:
            from_table.status = TableStatus.AVAILABLE
            to_table.status = TableStatus.PLAYING
            session.table = to_table
            session.note = f"{session.note.strip()}\n{line}" if (session.note or "").strip() else line
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            self._restore_table_statuses(previous)
            raise ConflictError("Destination table already has an open session", {"table_id": to_table_id})
        except Exception:
            self.db.rollback()
            self._restore_table_statuses(previous)
            raise

        self.db.refresh(session)
        logger.info("Session %s transferred %s -> %s", session.code, from_table.name, to_table.name)
        return session

    def _restore_table_statuses(self, previous: Dict[int, TableStatus]) -> None:
        for table_id, status in previous.items():
            table = self.db.get(Table, table_id)
            if table is not None:
                table.status = status
        self.db.commit()
        logger.warning("Transfer failed; restored table statuses %s", {k: v.value for k, v in previous.items()})
