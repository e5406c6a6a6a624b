"""Keep failure reason and delivery notes on settlement orders

Revision ID: 20261019_settlement_order_details
Revises: 20261018_settlement_tables
Create Date: 2026-10-19 10:30:00.000000

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_settlement_order_details"
down_revision = "20261018_settlement_tables"
branch_labels = None
depends_on = None


def upgrade():
    op.add_column("settlement_orders", sa.Column("failure_reason", sa.String(length=50), nullable=True))
    op.add_column("settlement_orders", sa.Column("notes", sa.Text(), nullable=True))


def downgrade():
    op.drop_column("settlement_orders", "notes")
    op.drop_column("settlement_orders", "failure_reason")
