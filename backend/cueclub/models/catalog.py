"""Catalog models read by the billing engine - table types, tables, products."""

from __future__ import annotations

import enum
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from cueclub.db.base import Base, TimestampMixin, value_enum
from cueclub.models.validators import non_negative, validate_list, validate_time_windows, validate_weekdays


class TableStatus(str, enum.Enum):
    """Display status of a physical table."""

    AVAILABLE = "available"
    PLAYING = "playing"
    RESERVED = "reserved"
    MAINTENANCE = "maintenance"


class TableType(Base, TimestampMixin):
    """Kind of table (Pool, Carom, Snooker) with its rate schedule.

    ``day_rates`` is a list of ``{"days": [0..6], "from": "HH:MM",
    "to": "HH:MM", "rate_per_hour": int}``; days use 0=Sunday and an empty
    list matches every day. ``from > to`` wraps past midnight.
    """

    __tablename__ = "table_types"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    base_rate_per_hour: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    day_rates: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    tables: Mapped[list["Table"]] = relationship("Table", back_populates="table_type")

    @validates("code")
    def _normalize_code(self, key, value):
        return (value or "").strip().upper()

    @validates("base_rate_per_hour")
    def _validate_rate(self, key, value):
        return non_negative(key, value)

    @validates("day_rates")
    def _validate_day_rates(self, key, value):
        validate_list(key, value)
        validate_time_windows(key, value)
        for entry in value or []:
            validate_weekdays(f"{key}.days", entry.get("days") or [])
            non_negative(f"{key}.rate_per_hour", entry.get("rate_per_hour", 0))
        return value


class Table(Base, TimestampMixin):
    """Physical billiard table."""

    __tablename__ = "tables"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    table_type_id: Mapped[int] = mapped_column(
        ForeignKey("table_types.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    status: Mapped[TableStatus] = mapped_column(
        value_enum(TableStatus), default=TableStatus.AVAILABLE, nullable=False, index=True
    )
    # Per-table override of the type's rate; None means "use the table type"
    rate_per_hour: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    table_type: Mapped[TableType] = relationship("TableType", back_populates="tables")

    @validates("rate_per_hour")
    def _validate_rate(self, key, value):
        return non_negative(key, value)

    @property
    def is_available(self) -> bool:
        return self.active and self.status == TableStatus.AVAILABLE


class ProductCategory(Base, TimestampMixin):
    """Product grouping used by product-scoped promotions."""

    __tablename__ = "product_categories"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Product(Base, TimestampMixin):
    """Sellable drink, snack or service item."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("product_categories.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    unit: Mapped[str] = mapped_column(String(32), default="", nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    category: Mapped[ProductCategory] = relationship("ProductCategory")

    @validates("price")
    def _validate_price(self, key, value):
        return non_negative(key, value)
