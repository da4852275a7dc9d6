"""init lifecycle tables

Revision ID: 20261019_0001
Revises: None
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0001_init_lifecycle_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"

    def _enum(*values: str, name: str, length: int) -> sa.Enum:
        # Statuses are stored as VARCHAR everywhere (the ORM maps them with
        # native_enum=False); only Postgres gets a CHECK constraint.
        return sa.Enum(
            *values,
            name=name,
            native_enum=False,
            length=length,
            create_constraint=is_postgres,
        )

    rfq_status = _enum(
        "submitted",
        "reviewing",
        "sent_to_suppliers",
        "quoted",
        "accepted",
        "declined",
        "cancelled",
        name="rfqstatus",
        length=32,
    )
    assignment_status = _enum("assigned", "quoted", name="rfqassignmentstatus", length=16)
    supplier_quote_status = _enum(
        "pending", "accepted", "rejected", name="supplierquotestatus", length=16
    )
    sales_quote_status = _enum("pending", "accepted", "declined", name="salesquotestatus", length=16)
    purchase_order_status = _enum(
        "pending",
        "accepted",
        "in_progress",
        "shipped",
        "delivered",
        "cancelled",
        name="purchaseorderstatus",
        length=16,
    )
    sales_order_status = _enum(
        "pending",
        "material_procurement",
        "manufacturing",
        "finishing",
        "quality_check",
        "packing",
        "shipped",
        "delivered",
        name="salesorderstatus",
        length=32,
    )
    payment_status = _enum("unpaid", "paid", name="paymentstatus", length=16)
    quality_check_status = _enum(
        "pending", "approved", "needs_revision", name="qualitycheckstatus", length=16
    )
    entity_type = _enum(
        "rfq",
        "supplier_quote",
        "sales_quote",
        "purchase_order",
        "sales_order",
        name="entitytype",
        length=32,
    )

    def _timestamps() -> list[sa.Column]:
        return [
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        ]

    op.create_table(
        "rfqs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("owner_customer_id", sa.String(length=64), nullable=False),
        sa.Column("project_name", sa.String(length=255), nullable=False),
        sa.Column("material", sa.String(length=128), nullable=False),
        sa.Column("material_grade", sa.String(length=128)),
        sa.Column("finishing", sa.String(length=128)),
        sa.Column("tolerance", sa.String(length=64), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("manufacturing_process", sa.String(length=64)),
        sa.Column("manufacturing_subprocess", sa.String(length=64)),
        sa.Column("international_manufacturing_ok", sa.Boolean(), server_default=sa.false()),
        sa.Column("notes", sa.Text()),
        sa.Column("special_instructions", sa.Text()),
        sa.Column("status", rfq_status, nullable=False),
        # FK to sales_orders is added once that table exists.
        sa.Column("origin_order_id", sa.String(length=36), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_rfqs_owner_customer_id", "rfqs", ["owner_customer_id"])
    op.create_index("ix_rfqs_status", "rfqs", ["status"])
    op.create_index("ix_rfqs_origin_order_id", "rfqs", ["origin_order_id"])

    op.create_table(
        "rfq_assignments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("rfq_id", sa.String(length=36), sa.ForeignKey("rfqs.id"), nullable=False),
        sa.Column("supplier_id", sa.String(length=64), nullable=False),
        sa.Column("status", assignment_status, nullable=False),
        sa.Column("assigned_by", sa.String(length=64)),
        sa.Column("assigned_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("rfq_id", "supplier_id", name="uq_rfq_assignments_rfq_supplier"),
    )
    op.create_index("ix_rfq_assignments_rfq_id", "rfq_assignments", ["rfq_id"])
    op.create_index("ix_rfq_assignments_supplier_id", "rfq_assignments", ["supplier_id"])

    op.create_table(
        "supplier_quotes",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("rfq_id", sa.String(length=36), sa.ForeignKey("rfqs.id"), nullable=False),
        sa.Column("supplier_id", sa.String(length=64), nullable=False),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("lead_time_days", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="USD"),
        sa.Column("notes", sa.Text()),
        sa.Column("payment_terms", sa.String(length=128)),
        sa.Column("valid_until", sa.DateTime(timezone=True)),
        sa.Column("status", supplier_quote_status, nullable=False),
        sa.Column("admin_feedback", sa.Text()),
        sa.Column("submitted_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("responded_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("rfq_id", "supplier_id", name="uq_supplier_quotes_rfq_supplier"),
    )
    op.create_index("ix_supplier_quotes_rfq_id", "supplier_quotes", ["rfq_id"])
    op.create_index("ix_supplier_quotes_supplier_id", "supplier_quotes", ["supplier_id"])
    op.create_index("ix_supplier_quotes_status", "supplier_quotes", ["status"])

    op.create_table(
        "sales_quotes",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("quote_number", sa.String(length=32), nullable=False, unique=True),
        sa.Column(
            "rfq_id", sa.String(length=36), sa.ForeignKey("rfqs.id"), nullable=False, unique=True
        ),
        sa.Column(
            "supplier_quote_id",
            sa.String(length=36),
            sa.ForeignKey("supplier_quotes.id"),
            nullable=True,
        ),
        sa.Column("customer_id", sa.String(length=64), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="USD"),
        sa.Column("markup_percent", sa.Float()),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("estimated_delivery_date", sa.DateTime(timezone=True)),
        sa.Column("notes", sa.Text()),
        sa.Column("status", sales_quote_status, nullable=False),
        sa.Column("customer_response", sa.Text()),
        sa.Column("purchase_order_url", sa.Text()),
        sa.Column("purchase_order_number", sa.String(length=64)),
        sa.Column("responded_at", sa.DateTime(timezone=True)),
        sa.Column("accepted_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index("ix_sales_quotes_supplier_quote_id", "sales_quotes", ["supplier_quote_id"])
    op.create_index("ix_sales_quotes_customer_id", "sales_quotes", ["customer_id"])
    op.create_index("ix_sales_quotes_status", "sales_quotes", ["status"])

    op.create_table(
        "purchase_orders",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("order_number", sa.String(length=32), nullable=False, unique=True),
        sa.Column(
            "source_sales_quote_id",
            sa.String(length=36),
            sa.ForeignKey("sales_quotes.id"),
            nullable=False,
        ),
        sa.Column(
            "supplier_quote_id",
            sa.String(length=36),
            sa.ForeignKey("supplier_quotes.id"),
            nullable=True,
        ),
        sa.Column("rfq_id", sa.String(length=36), sa.ForeignKey("rfqs.id"), nullable=False),
        sa.Column("supplier_id", sa.String(length=64), nullable=False),
        sa.Column("total_amount", sa.Float(), nullable=False),
        sa.Column("delivery_date", sa.DateTime(timezone=True)),
        sa.Column("notes", sa.Text()),
        sa.Column("po_file_url", sa.Text()),
        sa.Column("status", purchase_order_status, nullable=False),
        sa.Column("supplier_invoice_url", sa.Text()),
        sa.Column("invoice_uploaded_at", sa.DateTime(timezone=True)),
        sa.Column("accepted_at", sa.DateTime(timezone=True)),
        sa.Column("archived_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index(
        "ix_purchase_orders_source_sales_quote_id", "purchase_orders", ["source_sales_quote_id"]
    )
    op.create_index("ix_purchase_orders_rfq_id", "purchase_orders", ["rfq_id"])
    op.create_index("ix_purchase_orders_supplier_id", "purchase_orders", ["supplier_id"])
    op.create_index("ix_purchase_orders_status", "purchase_orders", ["status"])
    op.create_index("ix_purchase_orders_archived_at", "purchase_orders", ["archived_at"])

    op.create_table(
        "sales_orders",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("order_number", sa.String(length=32), nullable=False, unique=True),
        sa.Column("rfq_id", sa.String(length=36), sa.ForeignKey("rfqs.id"), nullable=False),
        sa.Column(
            "quote_id",
            sa.String(length=36),
            sa.ForeignKey("sales_quotes.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("customer_id", sa.String(length=64), nullable=False),
        sa.Column("project_name", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="USD"),
        sa.Column("customer_purchase_order_number", sa.String(length=64)),
        sa.Column("order_status", sales_order_status, nullable=False),
        sa.Column("payment_status", payment_status, nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("archived_at", sa.DateTime(timezone=True)),
        sa.Column("tracking_number", sa.String(length=128)),
        sa.Column("shipping_carrier", sa.String(length=128)),
        sa.Column("estimated_completion", sa.DateTime(timezone=True)),
        sa.Column("quality_check_status", quality_check_status, nullable=False),
        sa.Column("quality_check_notes", sa.Text()),
        sa.Column("customer_approved_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index("ix_sales_orders_rfq_id", "sales_orders", ["rfq_id"])
    op.create_index("ix_sales_orders_customer_id", "sales_orders", ["customer_id"])
    op.create_index("ix_sales_orders_order_status", "sales_orders", ["order_status"])
    op.create_index("ix_sales_orders_is_archived", "sales_orders", ["is_archived"])

    with op.batch_alter_table("rfqs") as batch:
        batch.create_foreign_key(
            "fk_rfqs_origin_order_id",
            "sales_orders",
            ["origin_order_id"],
            ["id"],
            ondelete="SET NULL",
        )

    op.create_table(
        "lifecycle_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("entity_type", entity_type, nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("transition", sa.String(length=64), nullable=False),
        sa.Column("from_status", sa.String(length=32)),
        sa.Column("to_status", sa.String(length=32)),
        sa.Column("actor_id", sa.String(length=64)),
        sa.Column("actor_role", sa.String(length=16)),
        sa.Column("payload", sa.JSON()),
        sa.Column(
            "occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("ix_lifecycle_events_entity_type", "lifecycle_events", ["entity_type"])
    op.create_index("ix_lifecycle_events_entity_id", "lifecycle_events", ["entity_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("actor_id", sa.String(length=64), nullable=True),
        sa.Column("payload_json", sa.Text()),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_request_id", "audit_logs", ["request_id"])
    op.create_index(
        "ix_audit_logs_idempotency_key", "audit_logs", ["idempotency_key"], unique=True
    )

    op.create_table(
        "document_yearly_sequences",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("doc_type", sa.String(length=16), nullable=False),
        sa.Column("year", sa.String(length=4), nullable=False),
        sa.Column("last_seq", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("doc_type", "year", name="uq_doc_seq_doc_type_year"),
    )


def downgrade() -> None:
    op.drop_table("document_yearly_sequences")
    op.drop_table("audit_logs")
    op.drop_table("lifecycle_events")
    with op.batch_alter_table("rfqs") as batch:
        batch.drop_constraint("fk_rfqs_origin_order_id", type_="foreignkey")
    op.drop_table("sales_orders")
    op.drop_table("purchase_orders")
    op.drop_table("sales_quotes")
    op.drop_table("supplier_quotes")
    op.drop_table("rfq_assignments")
    op.drop_table("rfqs")
