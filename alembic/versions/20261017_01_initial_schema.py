"""Trips, orders, payments and loyalty ledger.

Revision ID: 20261017_01
Revises:
Create Date: 2026-10-17
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261017_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


trip_availability_enum = postgresql.ENUM("OPEN", "WAITLIST", "CLOSED", name="trip_availability_enum", create_type=False)
checkout_session_status_enum = postgresql.ENUM(
    "PENDING", "PAID", "CANCELLED", "EXPIRED", name="checkout_session_status_enum", create_type=False
)
order_status_enum = postgresql.ENUM(
    "DRAFT", "SUBMITTED", "CONFIRMED", "CANCELLED", name="order_status_enum", create_type=False
)
payment_status_enum = postgresql.ENUM(
    "PENDING", "PAID", "FAILED", "CANCELLED", "REFUNDED", name="payment_status_enum", create_type=False
)
payment_provider_enum = postgresql.ENUM(
    "EXTERNAL_GATEWAY", "MANUAL_TRANSFER", name="payment_provider_enum", create_type=False
)
loyalty_transaction_type_enum = postgresql.ENUM(
    "EARN", "SPEND", "ADJUST", name="loyalty_transaction_type_enum", create_type=False
)

_ENUMS = (
    trip_availability_enum,
    checkout_session_status_enum,
    order_status_enum,
    payment_status_enum,
    payment_provider_enum,
    loyalty_transaction_type_enum,
)


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)]
    if updated:
        columns.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)
        )
    return columns


def upgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum in _ENUMS:
            enum.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "trips",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("slug", sa.String(), nullable=False, unique=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("seats_left", sa.Integer(), nullable=False),
        sa.Column("availability", trip_availability_enum, nullable=False, server_default="OPEN"),
        *_timestamps(),
        sa.CheckConstraint("seats_left >= 0", name="ck_trips_seats_left_non_negative"),
        sa.CheckConstraint("seats_left <= capacity", name="ck_trips_seats_left_within_capacity"),
    )

    op.create_table(
        "checkout_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("status", checkout_session_status_enum, nullable=False, server_default="PENDING"),
        sa.Column("customer_email", sa.String(), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("cart_data", sa.JSON(), nullable=False),
        sa.Column("points_reserved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_checkout_sessions_expires_at", "checkout_sessions", ["expires_at"])

    op.create_table(
        "orders",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("order_number", sa.String(), nullable=False),
        sa.Column("status", order_status_enum, nullable=False, server_default="DRAFT"),
        sa.Column("customer_email", sa.String(), nullable=False),
        sa.Column("customer_name", sa.String(), nullable=True),
        sa.Column("customer_phone", sa.String(length=32), nullable=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("checkout_session_id", postgresql.UUID(as_uuid=True), nullable=True, unique=True),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="PLN"),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["checkout_session_id"], ["checkout_sessions.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_orders_order_number", "orders", ["order_number"], unique=True)
    op.create_index("ix_orders_status", "orders", ["status"])

    op.create_table(
        "order_items",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("trip_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("qty", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["trip_id"], ["trips.id"], ondelete="RESTRICT"),
    )

    op.create_table(
        "payments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("provider", payment_provider_enum, nullable=False),
        sa.Column("status", payment_status_enum, nullable=False, server_default="PENDING"),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="PLN"),
        sa.Column("external_id", sa.String(), nullable=True),
        sa.Column("raw", sa.JSON(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_payments_order_id", "payments", ["order_id"])

    op.create_table(
        "loyalty_accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("points_balance", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "loyalty_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("type", loyalty_transaction_type_enum, nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("note", sa.String(), nullable=True),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["account_id"], ["loyalty_accounts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_loyalty_transactions_order_id", "loyalty_transactions", ["order_id"])
    op.create_index("ix_loyalty_transactions_account_type", "loyalty_transactions", ["account_id", "type"])
    op.create_index(
        "uq_loyalty_transactions_account_order_type",
        "loyalty_transactions",
        ["account_id", "order_id", "type"],
        unique=True,
        postgresql_where=sa.text("type IN ('EARN', 'SPEND')"),
        sqlite_where=sa.text("type IN ('EARN', 'SPEND')"),
    )


def downgrade() -> None:
    op.drop_index("uq_loyalty_transactions_account_order_type", table_name="loyalty_transactions")
    op.drop_index("ix_loyalty_transactions_account_type", table_name="loyalty_transactions")
    op.drop_index("ix_loyalty_transactions_order_id", table_name="loyalty_transactions")
    op.drop_table("loyalty_transactions")
    op.drop_table("loyalty_accounts")
    op.drop_index("ix_payments_order_id", table_name="payments")
    op.drop_table("payments")
    op.drop_table("order_items")
    op.drop_index("ix_orders_status", table_name="orders")
    op.drop_index("ix_orders_order_number", table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_checkout_sessions_expires_at", table_name="checkout_sessions")
    op.drop_table("checkout_sessions")
    op.drop_table("trips")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum in reversed(_ENUMS):
            enum.drop(bind, checkfirst=True)
