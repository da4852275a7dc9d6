"""add sales order invoice

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0002_add_sales_order_invoice"
down_revision = "20261019_0001_init_lifecycle_tables"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("sales_orders", sa.Column("invoice_url", sa.Text(), nullable=True))
    op.add_column(
        "sales_orders", sa.Column("invoice_uploaded_at", sa.DateTime(timezone=True), nullable=True)
    )


def downgrade() -> None:
    op.drop_column("sales_orders", "invoice_uploaded_at")
    op.drop_column("sales_orders", "invoice_url")
