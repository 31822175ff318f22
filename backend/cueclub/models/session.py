"""Table occupancy sessions and their line items."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, composite, mapped_column, relationship, validates

from cueclub.db.base import Base, TimestampMixin, value_enum
from cueclub.models.snapshots import RoundingPolicySnapshot, TableSnapshot
from cueclub.models.validators import non_negative, positive
from cueclub.services.errors import InvalidStateError

_SNAPSHOT_COLUMNS = (
    "snap_table_id",
    "snap_table_name",
    "snap_table_type_id",
    "snap_table_type_code",
    "snap_rate_per_hour",
    "snap_rate_source",
    "rule_rounding_step",
    "rule_rounding_mode",
    "rule_grace_minutes",
)


class SessionStatus(str, enum.Enum):
    """Lifecycle: open -> closed | void. Both end states are terminal."""

    OPEN = "open"
    CLOSED = "closed"
    VOID = "void"


class PlaySession(Base, TimestampMixin):
    """One continuous occupancy of a table, from check-in to checkout/void."""

    __tablename__ = "play_sessions"
    __table_args__ = (
        # Occupancy lock: at most one open session per table
        Index(
            "uq_play_sessions_open_table",
            "table_id",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
        Index("idx_play_sessions_status_start", "status", "start_time"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    table_id: Mapped[int] = mapped_column(
        ForeignKey("tables.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    # TableSnapshot columns
    snap_table_id: Mapped[int] = mapped_column(Integer, nullable=False)
    snap_table_name: Mapped[str] = mapped_column(String(64), nullable=False)
    snap_table_type_id: Mapped[int] = mapped_column(Integer, nullable=False)
    snap_table_type_code: Mapped[str] = mapped_column(String(32), nullable=False)
    snap_rate_per_hour: Mapped[int] = mapped_column(Integer, nullable=False)
    snap_rate_source: Mapped[str] = mapped_column(String(16), nullable=False)

    # RoundingPolicySnapshot columns
    rule_rounding_step: Mapped[int] = mapped_column(Integer, nullable=False)
    rule_rounding_mode: Mapped[str] = mapped_column(String(8), nullable=False)
    rule_grace_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    table_snapshot: Mapped[TableSnapshot] = composite(
        TableSnapshot,
        "snap_table_id",
        "snap_table_name",
        "snap_table_type_id",
        "snap_table_type_code",
        "snap_rate_per_hour",
        "snap_rate_source",
    )
    rounding_policy: Mapped[RoundingPolicySnapshot] = composite(
        RoundingPolicySnapshot,
        "rule_rounding_step",
        "rule_rounding_mode",
        "rule_grace_minutes",
    )

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # Billable minutes frozen at checkout
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    status: Mapped[SessionStatus] = mapped_column(
        value_enum(SessionStatus), default=SessionStatus.OPEN, nullable=False
    )

    opened_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    closed_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    note: Mapped[str] = mapped_column(Text, default="", nullable=False)
    void_reason: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)

    table: Mapped["Table"] = relationship("Table")
    items: Mapped[list["SessionItem"]] = relationship(
        "SessionItem",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="SessionItem.id",
    )
    bill: Mapped[Optional["Bill"]] = relationship("Bill", back_populates="session", uselist=False)

    @validates(*_SNAPSHOT_COLUMNS)
    def _freeze_snapshot(self, key, value):
        current = getattr(self, key)
        if current is not None and current != value:
            raise InvalidStateError(
                "Session pricing snapshots are set once at check-in",
                {"field": key},
            )
        return value

    @property
    def is_open(self) -> bool:
        return self.status == SessionStatus.OPEN

    @property
    def service_amount(self) -> int:
        return sum(item.amount for item in self.items)

    def find_item(self, item_id: int) -> Optional["SessionItem"]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def find_item_for_product(self, product_id: int) -> Optional["SessionItem"]:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None


class SessionItem(Base):
    """Product consumed during a session, with name/price frozen at add time."""

    __tablename__ = "session_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[int] = mapped_column(
        ForeignKey("play_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True
    )
    category_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    name_snapshot: Mapped[str] = mapped_column(String(160), nullable=False)
    price_snapshot: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    note: Mapped[str] = mapped_column(String(300), default="", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP"), nullable=False
    )

    session: Mapped[PlaySession] = relationship("PlaySession", back_populates="items")

    @validates("quantity")
    def _validate_quantity(self, key, value):
        return positive(key, value)

    @validates("price_snapshot")
    def _validate_price(self, key, value):
        return non_negative(key, value)

    @property
    def amount(self) -> int:
        return (self.price_snapshot or 0) * (self.quantity or 0)
