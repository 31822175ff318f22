"""Immutable invoices produced at checkout.

Charge lines use single-table inheritance on ``kind``: ``PlayCharge`` for
the metered time and ``ProductCharge`` for each consumed product. After a
bill is flushed, only ``paid``, ``payment_method``, ``paid_at`` and ``note``
may change; the flush hooks at the bottom of this module enforce that.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cueclub.db.base import Base, TimestampMixin, value_enum
from cueclub.services.errors import InvalidStateError


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"
    OTHER = "other"


class Bill(Base, TimestampMixin):
    """Invoice for one closed session."""

    __tablename__ = "bills"
    __table_args__ = (
        Index("idx_bills_paid_created", "paid", "created_at"),
        Index("idx_bills_table_created", "table_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    session_id: Mapped[int] = mapped_column(
        ForeignKey("play_sessions.id", ondelete="RESTRICT"), unique=True, nullable=False
    )
    table_id: Mapped[int] = mapped_column(
        ForeignKey("tables.id", ondelete="RESTRICT"), nullable=False
    )
    table_name: Mapped[str] = mapped_column(String(64), nullable=False)

    play_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    service_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sub_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    discount_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    surcharge: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        value_enum(PaymentMethod, length=10), default=PaymentMethod.CASH, nullable=False
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    staff_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    note: Mapped[str] = mapped_column(String(500), default="", nullable=False)

    session: Mapped["PlaySession"] = relationship("PlaySession", back_populates="bill")
    items: Mapped[list["BillItem"]] = relationship(
        "BillItem", back_populates="bill", order_by="BillItem.position", cascade="save-update, merge"
    )
    discounts: Mapped[list["BillDiscount"]] = relationship(
        "BillDiscount", back_populates="bill", order_by="BillDiscount.position", cascade="save-update, merge"
    )

    @property
    def play_charge(self) -> Optional["PlayCharge"]:
        for item in self.items:
            if isinstance(item, PlayCharge):
                return item
        return None


class BillItem(Base):
    """A frozen charge line on a bill."""

    __tablename__ = "bill_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    bill_id: Mapped[int] = mapped_column(
        ForeignKey("bills.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)

    bill: Mapped[Bill] = relationship("Bill", back_populates="items")

    __mapper_args__ = {
        "polymorphic_on": "kind",
        "polymorphic_identity": "item",
    }


class PlayCharge(BillItem):
    """Metered table time: billable minutes at the snapshotted rate."""

    minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    rate_per_hour: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    __mapper_args__ = {"polymorphic_identity": "play"}


class ProductCharge(BillItem):
    """One consumed product at its add-time name and price."""

    product_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("products.id", ondelete="SET NULL"), nullable=True
    )
    name_snapshot: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    price_snapshot: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    note: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)

    __mapper_args__ = {"polymorphic_identity": "product"}


class BillDiscount(Base):
    """Discount line applied to a bill, with traceability metadata."""

    __tablename__ = "bill_discounts"

    id: Mapped[int] = mapped_column(primary_key=True)
    bill_id: Mapped[int] = mapped_column(
        ForeignKey("bills.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    promotion_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("promotions.id", ondelete="SET NULL"), nullable=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    name: Mapped[str] = mapped_column(String(160), default="", nullable=False)
    discount_type: Mapped[str] = mapped_column(String(8), nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    target: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    meta: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    bill: Mapped[Bill] = relationship("Bill", back_populates="discounts")


# Immutability hooks

BILL_PATCHABLE_FIELDS = frozenset({"paid", "payment_method", "paid_at", "note", "updated_at"})


@event.listens_for(Bill, "before_update")
def _guard_bill_update(mapper, connection, target):
    state = inspect(target)
    changed = [
        attr.key
        for attr in mapper.column_attrs
        if attr.key not in BILL_PATCHABLE_FIELDS and state.attrs[attr.key].history.has_changes()
    ]
    if changed:
        raise InvalidStateError(
            "Bill figures are immutable once issued",
            {"bill_id": target.id, "fields": sorted(changed)},
        )


@event.listens_for(Bill, "before_delete")
def _guard_bill_delete(mapper, connection, target):
    raise InvalidStateError("Bills cannot be deleted", {"bill_id": target.id})


def _guard_line(kind: str):
    def _raise(mapper, connection, target):
        raise InvalidStateError(
            f"Bill {kind} lines are immutable once issued",
            {"bill_id": target.bill_id, "line_id": target.id},
        )

    return _raise


for _cls, _kind in ((BillItem, "charge"), (BillDiscount, "discount")):
    event.listen(_cls, "before_update", _guard_line(_kind), propagate=True)
    event.listen(_cls, "before_delete", _guard_line(_kind), propagate=True)
