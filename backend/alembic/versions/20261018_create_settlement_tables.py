"""Create dispatch session and daily settlement tables

Revision ID: 20261018_settlement_tables
Revises:
Create Date: 2026-10-18 09:00:00.000000

stores, carriers and orders belong to the back-office schema and already exist.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_settlement_tables"
down_revision = None
branch_labels = None
depends_on = None


def _enum(*values):
    return sa.Enum(*values, native_enum=False, length=20)


def upgrade():
    op.add_column("carriers", sa.Column("failed_attempt_fee_percent", sa.Integer(), nullable=True))

    op.create_table(
        "carrier_zones",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("store_id", sa.Uuid(), sa.ForeignKey("stores.id"), nullable=False, index=True),
        sa.Column("carrier_id", sa.Uuid(), sa.ForeignKey("carriers.id"), nullable=False),
        sa.Column("zone_name", sa.String(), nullable=False),
        sa.Column("zone_code", sa.String(), nullable=True),
        sa.Column("rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
        sa.UniqueConstraint("carrier_id", "zone_name", name="uq_carrier_zones_carrier_zone_name"),
    )

    op.create_table(
        "daily_settlements",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("store_id", sa.Uuid(), sa.ForeignKey("stores.id"), nullable=False, index=True),
        sa.Column("carrier_id", sa.Uuid(), sa.ForeignKey("carriers.id"), nullable=True),
        sa.Column("settlement_code", sa.String(), nullable=False),
        sa.Column("settlement_date", sa.Date(), nullable=False),
        sa.Column("status", _enum("pending", "completed", "with_issues"), nullable=False),
        sa.Column("expected_cash", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("collected_cash", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_dispatched", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_delivered", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_carrier_fees", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("failed_attempt_fee", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("net_receivable", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("amount_paid", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("balance_due", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("payment_method", sa.String(), nullable=True),
        sa.Column("payment_reference", sa.String(), nullable=True),
        sa.Column("payment_notes", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("settled_by", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
        sa.UniqueConstraint(
            "store_id", "carrier_id", "settlement_date", name="uq_daily_settlements_store_carrier_date"
        ),
        sa.UniqueConstraint("store_id", "settlement_code", name="uq_daily_settlements_store_code"),
    )

    op.create_table(
        "dispatch_sessions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("store_id", sa.Uuid(), sa.ForeignKey("stores.id"), nullable=False, index=True),
        sa.Column("carrier_id", sa.Uuid(), sa.ForeignKey("carriers.id"), nullable=False),
        sa.Column("session_code", sa.String(), nullable=False),
        sa.Column("dispatch_date", sa.Date(), nullable=False),
        sa.Column("status", _enum("open", "exported", "imported", "processed", "cancelled"), nullable=False),
        sa.Column("total_orders", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_cod_expected", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_prepaid", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("settlement_id", sa.Uuid(), sa.ForeignKey("daily_settlements.id"), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("exported_at", sa.DateTime(), nullable=True),
        sa.Column("imported_at", sa.DateTime(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("store_id", "session_code", name="uq_dispatch_sessions_store_code"),
    )

    op.create_table(
        "dispatch_session_orders",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("dispatch_session_id", sa.Uuid(), sa.ForeignKey("dispatch_sessions.id"), nullable=False, index=True),
        sa.Column("order_id", sa.Uuid(), sa.ForeignKey("orders.id"), nullable=False, index=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("order_number", sa.String(), nullable=False),
        sa.Column("customer_name", sa.String(), nullable=True),
        sa.Column("customer_phone", sa.String(), nullable=True),
        sa.Column("delivery_address", sa.String(), nullable=True),
        sa.Column("delivery_zone", sa.String(), nullable=True),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("payment_method", sa.String(), nullable=True),
        sa.Column("is_cod", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("carrier_fee", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("delivery_outcome", _enum("pending", "delivered", "failed", "returned"), nullable=False),
        sa.Column("amount_collected", sa.Numeric(12, 2), nullable=True),
        sa.Column("failure_reason", sa.String(), nullable=True),
        sa.Column("courier_notes", sa.String(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("dispatch_session_id", "order_id", name="uq_dispatch_session_orders_session_order"),
    )

    op.create_table(
        "settlement_orders",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("settlement_id", sa.Uuid(), sa.ForeignKey("daily_settlements.id"), nullable=False, index=True),
        sa.Column("order_id", sa.Uuid(), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("amount_collected", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("delivery_outcome", _enum("pending", "delivered", "failed", "returned"), nullable=False),
        sa.Column("carrier_fee", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime()),
        sa.UniqueConstraint("order_id", name="uq_settlement_orders_order"),
    )


def downgrade():
    op.drop_table("settlement_orders")
    op.drop_table("dispatch_session_orders")
    op.drop_table("dispatch_sessions")
    op.drop_table("daily_settlements")
    op.drop_table("carrier_zones")
    op.drop_column("carriers", "failed_attempt_fee_percent")
