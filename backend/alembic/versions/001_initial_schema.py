"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-16 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # Users table
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # Catalog
    op.create_table(
        "table_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("base_rate_per_hour", sa.Integer(), nullable=False),
        sa.Column("day_rates", sa.JSON(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_table_types_code", "table_types", ["code"], unique=True)

    op.create_table(
        "tables",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(64), nullable=False, unique=True),
        sa.Column("table_type_id", sa.Integer(), sa.ForeignKey("table_types.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("rate_per_hour", sa.Integer(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_tables_table_type_id", "tables", ["table_type_id"])
    op.create_index("ix_tables_status", "tables", ["status"])

    op.create_table(
        "product_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("product_categories.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column("unit", sa.String(32), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_products_category_id", "products", ["category_id"])

    # Venue billing settings
    op.create_table(
        "venue_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("rounding_step", sa.Integer(), nullable=False),
        sa.Column("rounding_mode", sa.String(8), nullable=False),
        sa.Column("grace_minutes", sa.Integer(), nullable=False),
        sa.Column("updated_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
    )

    # Sessions
    op.create_table(
        "play_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(32), nullable=False, unique=True),
        sa.Column("table_id", sa.Integer(), sa.ForeignKey("tables.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("snap_table_id", sa.Integer(), nullable=False),
        sa.Column("snap_table_name", sa.String(64), nullable=False),
        sa.Column("snap_table_type_id", sa.Integer(), nullable=False),
        sa.Column("snap_table_type_code", sa.String(32), nullable=False),
        sa.Column("snap_rate_per_hour", sa.Integer(), nullable=False),
        sa.Column("snap_rate_source", sa.String(16), nullable=False),
        sa.Column("rule_rounding_step", sa.Integer(), nullable=False),
        sa.Column("rule_rounding_mode", sa.String(8), nullable=False),
        sa.Column("rule_grace_minutes", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("opened_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("closed_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("note", sa.Text(), nullable=False),
        sa.Column("void_reason", sa.String(300), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_play_sessions_table_id", "play_sessions", ["table_id"])
    op.create_index("ix_play_sessions_opened_by", "play_sessions", ["opened_by"])
    op.create_index("idx_play_sessions_status_start", "play_sessions", ["status", "start_time"])
    # Occupancy lock: one open session per table
    op.create_index(
        "uq_play_sessions_open_table",
        "play_sessions",
        ["table_id"],
        unique=True,
        sqlite_where=sa.text("status = 'open'"),
        postgresql_where=sa.text("status = 'open'"),
    )

    op.create_table(
        "session_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("play_sessions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="SET NULL"), nullable=True),
        sa.Column("category_id", sa.Integer(), nullable=True),
        sa.Column("name_snapshot", sa.String(160), nullable=False),
        sa.Column("price_snapshot", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("note", sa.String(300), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_session_items_session_id", "session_items", ["session_id"])
    op.create_index("ix_session_items_product_id", "session_items", ["product_id"])

    # Promotions
    op.create_table(
        "promotions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("scope", sa.String(8), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("apply_order", sa.Integer(), nullable=False),
        sa.Column("stackable", sa.Boolean(), nullable=False),
        sa.Column("valid_from", sa.Date(), nullable=True),
        sa.Column("valid_to", sa.Date(), nullable=True),
        sa.Column("days_of_week", sa.JSON(), nullable=False),
        sa.Column("time_ranges", sa.JSON(), nullable=False),
        sa.Column("rule", sa.JSON(), nullable=False),
        sa.Column("discount_type", sa.String(8), nullable=False),
        sa.Column("discount_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_target", sa.String(8), nullable=False),
        sa.Column("max_amount", sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_promotions_code", "promotions", ["code"], unique=True)
    op.create_index("ix_promotions_scope", "promotions", ["scope"])
    op.create_index("idx_promotions_active_order", "promotions", ["active", "apply_order"])
    op.create_index("idx_promotions_validity", "promotions", ["valid_from", "valid_to"])

    # Bills
    op.create_table(
        "bills",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("play_sessions.id", ondelete="RESTRICT"), nullable=False, unique=True),
        sa.Column("table_id", sa.Integer(), sa.ForeignKey("tables.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("table_name", sa.String(64), nullable=False),
        sa.Column("play_amount", sa.Integer(), nullable=False),
        sa.Column("service_amount", sa.Integer(), nullable=False),
        sa.Column("sub_total", sa.Integer(), nullable=False),
        sa.Column("discount_total", sa.Integer(), nullable=False),
        sa.Column("surcharge", sa.Integer(), nullable=False),
        sa.Column("total", sa.Integer(), nullable=False),
        sa.Column("paid", sa.Boolean(), nullable=False),
        sa.Column("payment_method", sa.String(10), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("staff_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("note", sa.String(500), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_bills_code", "bills", ["code"], unique=True)
    op.create_index("ix_bills_paid", "bills", ["paid"])
    op.create_index("ix_bills_staff_id", "bills", ["staff_id"])
    op.create_index("idx_bills_paid_created", "bills", ["paid", "created_at"])
    op.create_index("idx_bills_table_created", "bills", ["table_id", "created_at"])

    # Bill charge lines (single-table inheritance on kind: play | product)
    op.create_table(
        "bill_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("bill_id", sa.Integer(), sa.ForeignKey("bills.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("minutes", sa.Integer(), nullable=True),
        sa.Column("rate_per_hour", sa.Integer(), nullable=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="SET NULL"), nullable=True),
        sa.Column("name_snapshot", sa.String(160), nullable=True),
        sa.Column("price_snapshot", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=True),
        sa.Column("note", sa.String(300), nullable=True),
    )
    op.create_index("ix_bill_items_bill_id", "bill_items", ["bill_id"])

    op.create_table(
        "bill_discounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("bill_id", sa.Integer(), sa.ForeignKey("bills.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("promotion_id", sa.Integer(), sa.ForeignKey("promotions.id", ondelete="SET NULL"), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("discount_type", sa.String(8), nullable=False),
        sa.Column("value", sa.Numeric(12, 2), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("target", sa.String(8), nullable=True),
        sa.Column("meta", sa.JSON(), nullable=True),
    )
    op.create_index("ix_bill_discounts_bill_id", "bill_discounts", ["bill_id"])


def downgrade() -> None:
    op.drop_table("bill_discounts")
    op.drop_table("bill_items")
    op.drop_table("bills")
    op.drop_table("promotions")
    op.drop_table("session_items")
    op.drop_index("uq_play_sessions_open_table", table_name="play_sessions")
    op.drop_table("play_sessions")
    op.drop_table("venue_settings")
    op.drop_table("products")
    op.drop_table("product_categories")
    op.drop_table("tables")
    op.drop_table("table_types")
    op.drop_table("users")
