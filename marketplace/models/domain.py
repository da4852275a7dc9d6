# ruff: noqa: E501
import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    func,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class ActorRole(PyEnum):
    customer = "customer"
    supplier = "supplier"
    admin = "admin"


class EntityType(PyEnum):
    rfq = "rfq"
    supplier_quote = "supplier_quote"
    sales_quote = "sales_quote"
    purchase_order = "purchase_order"
    sales_order = "sales_order"


class RfqStatus(PyEnum):
    submitted = "submitted"
    reviewing = "reviewing"
    sent_to_suppliers = "sent_to_suppliers"
    quoted = "quoted"
    accepted = "accepted"
    declined = "declined"
    cancelled = "cancelled"


class RfqAssignmentStatus(PyEnum):
    assigned = "assigned"
    quoted = "quoted"


class SupplierQuoteStatus(PyEnum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"


class SalesQuoteStatus(PyEnum):
    pending = "pending"
    accepted = "accepted"
    declined = "declined"


class PurchaseOrderStatus(PyEnum):
    pending = "pending"
    accepted = "accepted"
    in_progress = "in_progress"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class SalesOrderStatus(PyEnum):
    pending = "pending"
    material_procurement = "material_procurement"
    manufacturing = "manufacturing"
    finishing = "finishing"
    quality_check = "quality_check"
    packing = "packing"
    shipped = "shipped"
    delivered = "delivered"


# Fixed production pipeline; index order is the only legal direction of travel.
SALES_ORDER_PIPELINE: tuple[SalesOrderStatus, ...] = tuple(SalesOrderStatus)


class PaymentStatus(PyEnum):
    unpaid = "unpaid"
    paid = "paid"


class QualityCheckStatus(PyEnum):
    pending = "pending"
    approved = "approved"
    needs_revision = "needs_revision"


# Fields describing *what* is manufactured. Copied verbatim on reorder and never
# updated after submission.
RFQ_SPECIFICATION_FIELDS: tuple[str, ...] = (
    "material",
    "material_grade",
    "finishing",
    "tolerance",
    "quantity",
    "manufacturing_process",
    "manufacturing_subprocess",
    "international_manufacturing_ok",
)


class Rfq(Base):
    __tablename__ = "rfqs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    owner_customer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    project_name: Mapped[str] = mapped_column(String(255), nullable=False)
    material: Mapped[str] = mapped_column(String(128), nullable=False)
    material_grade: Mapped[str | None] = mapped_column(String(128))
    finishing: Mapped[str | None] = mapped_column(String(128))
    tolerance: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    manufacturing_process: Mapped[str | None] = mapped_column(String(64))
    manufacturing_subprocess: Mapped[str | None] = mapped_column(String(64))
    international_manufacturing_ok: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[str | None] = mapped_column(Text)
    special_instructions: Mapped[str | None] = mapped_column(Text)
    status: Mapped[RfqStatus] = mapped_column(
        Enum(RfqStatus, native_enum=False, length=32),
        default=RfqStatus.submitted,
        nullable=False,
        index=True,
    )
    # Set only when the RFQ was derived from a previous order (reorder).
    origin_order_id: Mapped[str | None] = mapped_column(
        ForeignKey(
            "sales_orders.id",
            use_alter=True,
            name="fk_rfqs_origin_order_id",
            ondelete="SET NULL",
        ),
        nullable=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    assignments = relationship(
        "RfqAssignment", back_populates="rfq", cascade="all, delete-orphan"
    )
    supplier_quotes = relationship(
        "SupplierQuote", back_populates="rfq", cascade="all, delete-orphan"
    )
    sales_quote = relationship("SalesQuote", back_populates="rfq", uselist=False, viewonly=True)
    origin_order = relationship("SalesOrder", foreign_keys=[origin_order_id], viewonly=True)

    def specification(self) -> dict:
        return {name: getattr(self, name) for name in RFQ_SPECIFICATION_FIELDS}


@event.listens_for(Rfq, "before_update")
def _rfq_specification_is_immutable(_mapper, _connection, target: Rfq):
    state = inspect(target)
    changed = [
        name for name in RFQ_SPECIFICATION_FIELDS if state.attrs[name].history.has_changes()
    ]
    if changed:
        raise ValueError(f"RFQ specification fields are immutable once submitted: {changed}")


class RfqAssignment(Base):
    __tablename__ = "rfq_assignments"
    __table_args__ = (
        UniqueConstraint("rfq_id", "supplier_id", name="uq_rfq_assignments_rfq_supplier"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    rfq_id: Mapped[str] = mapped_column(ForeignKey("rfqs.id"), nullable=False, index=True)
    supplier_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[RfqAssignmentStatus] = mapped_column(
        Enum(RfqAssignmentStatus, native_enum=False, length=16),
        default=RfqAssignmentStatus.assigned,
        nullable=False,
    )
    assigned_by: Mapped[str | None] = mapped_column(String(64))
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    rfq = relationship("Rfq", back_populates="assignments")


class SupplierQuote(Base):
    __tablename__ = "supplier_quotes"
    # One bid per supplier per RFQ; re-submission updates the pending row.
    __table_args__ = (
        UniqueConstraint("rfq_id", "supplier_id", name="uq_supplier_quotes_rfq_supplier"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    rfq_id: Mapped[str] = mapped_column(ForeignKey("rfqs.id"), nullable=False, index=True)
    supplier_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    lead_time_days: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="USD", nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    payment_terms: Mapped[str | None] = mapped_column(String(128))
    valid_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[SupplierQuoteStatus] = mapped_column(
        Enum(SupplierQuoteStatus, native_enum=False, length=16),
        default=SupplierQuoteStatus.pending,
        nullable=False,
        index=True,
    )
    admin_feedback: Mapped[str | None] = mapped_column(Text)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    rfq = relationship("Rfq", back_populates="supplier_quotes")


class SalesQuote(Base):
    __tablename__ = "sales_quotes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    quote_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    # One customer-facing quote per RFQ.
    rfq_id: Mapped[str] = mapped_column(ForeignKey("rfqs.id"), unique=True, nullable=False)
    supplier_quote_id: Mapped[str | None] = mapped_column(
        ForeignKey("supplier_quotes.id"), nullable=True, index=True
    )
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="USD", nullable=False)
    markup_percent: Mapped[float | None] = mapped_column(Float)
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    estimated_delivery_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    notes: Mapped[str | None] = mapped_column(Text)
    status: Mapped[SalesQuoteStatus] = mapped_column(
        Enum(SalesQuoteStatus, native_enum=False, length=16),
        default=SalesQuoteStatus.pending,
        nullable=False,
        index=True,
    )
    customer_response: Mapped[str | None] = mapped_column(Text)
    purchase_order_url: Mapped[str | None] = mapped_column(Text)
    purchase_order_number: Mapped[str | None] = mapped_column(String(64))
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    rfq = relationship("Rfq", back_populates="sales_quote")
    supplier_quote = relationship("SupplierQuote", viewonly=True)
    sales_order = relationship("SalesOrder", back_populates="quote", uselist=False, viewonly=True)

    def _validate_invariants(self) -> None:
        if self.purchase_order_url and self.status != SalesQuoteStatus.accepted:
            raise ValueError("SalesQuote.purchase_order_url requires status=accepted")


@event.listens_for(SalesQuote, "before_insert")
def _sales_quote_before_insert(_mapper, _connection, target: SalesQuote):
    target._validate_invariants()


@event.listens_for(SalesQuote, "before_update")
def _sales_quote_before_update(_mapper, _connection, target: SalesQuote):
    target._validate_invariants()


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    order_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    source_sales_quote_id: Mapped[str] = mapped_column(
        ForeignKey("sales_quotes.id"), nullable=False, index=True
    )
    supplier_quote_id: Mapped[str | None] = mapped_column(
        ForeignKey("supplier_quotes.id"), nullable=True
    )
    rfq_id: Mapped[str] = mapped_column(ForeignKey("rfqs.id"), nullable=False, index=True)
    supplier_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    total_amount: Mapped[float] = mapped_column(Float, nullable=False)
    delivery_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    notes: Mapped[str | None] = mapped_column(Text)
    po_file_url: Mapped[str | None] = mapped_column(Text)
    status: Mapped[PurchaseOrderStatus] = mapped_column(
        Enum(PurchaseOrderStatus, native_enum=False, length=16),
        default=PurchaseOrderStatus.pending,
        nullable=False,
        index=True,
    )
    supplier_invoice_url: Mapped[str | None] = mapped_column(Text)
    invoice_uploaded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    source_sales_quote = relationship("SalesQuote", viewonly=True)

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    def _validate_invariants(self) -> None:
        if self.archived_at is not None and self.status != PurchaseOrderStatus.delivered:
            raise ValueError("PurchaseOrder.archived_at requires status=delivered")


@event.listens_for(PurchaseOrder, "before_insert")
def _purchase_order_before_insert(_mapper, _connection, target: PurchaseOrder):
    target._validate_invariants()


@event.listens_for(PurchaseOrder, "before_update")
def _purchase_order_before_update(_mapper, _connection, target: PurchaseOrder):
    target._validate_invariants()


class SalesOrder(Base):
    __tablename__ = "sales_orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    order_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    rfq_id: Mapped[str] = mapped_column(ForeignKey("rfqs.id"), nullable=False, index=True)
    # At-most-once creation guard: a quote converts into exactly one order.
    quote_id: Mapped[str] = mapped_column(
        ForeignKey("sales_quotes.id"), unique=True, nullable=False
    )
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    project_name: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="USD", nullable=False)
    customer_purchase_order_number: Mapped[str | None] = mapped_column(String(64))
    order_status: Mapped[SalesOrderStatus] = mapped_column(
        Enum(SalesOrderStatus, native_enum=False, length=32),
        default=SalesOrderStatus.pending,
        nullable=False,
        index=True,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, native_enum=False, length=16),
        default=PaymentStatus.unpaid,
        nullable=False,
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    tracking_number: Mapped[str | None] = mapped_column(String(128))
    shipping_carrier: Mapped[str | None] = mapped_column(String(128))
    invoice_url: Mapped[str | None] = mapped_column(Text)
    invoice_uploaded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    estimated_completion: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    quality_check_status: Mapped[QualityCheckStatus] = mapped_column(
        Enum(QualityCheckStatus, native_enum=False, length=16),
        default=QualityCheckStatus.pending,
        nullable=False,
    )
    quality_check_notes: Mapped[str | None] = mapped_column(Text)
    customer_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    rfq = relationship("Rfq", foreign_keys=[rfq_id], viewonly=True)
    quote = relationship("SalesQuote", back_populates="sales_order")

    def _validate_invariants(self) -> None:
        if self.is_archived and self.order_status != SalesOrderStatus.delivered:
            raise ValueError("SalesOrder.is_archived requires order_status=delivered")


@event.listens_for(SalesOrder, "before_insert")
def _sales_order_before_insert(_mapper, _connection, target: SalesOrder):
    target._validate_invariants()


@event.listens_for(SalesOrder, "before_update")
def _sales_order_before_update(_mapper, _connection, target: SalesOrder):
    target._validate_invariants()


class LifecycleEvent(Base):
    """Append-only transition history for every lifecycle entity."""

    __tablename__ = "lifecycle_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[EntityType] = mapped_column(
        Enum(EntityType, native_enum=False, length=32), nullable=False, index=True
    )
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    transition: Mapped[str] = mapped_column(String(64), nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(32))
    to_status: Mapped[str | None] = mapped_column(String(32))
    actor_id: Mapped[str | None] = mapped_column(String(64))
    actor_role: Mapped[str | None] = mapped_column(String(16))
    payload: Mapped[dict | None] = mapped_column(JSON)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    action: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    payload_json: Mapped[str | None] = mapped_column(Text)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    idempotency_key: Mapped[str | None] = mapped_column(
        String(128), nullable=True, unique=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class DocumentYearlySequence(Base):
    __tablename__ = "document_yearly_sequences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    doc_type: Mapped[str] = mapped_column(String(16), nullable=False)
    year: Mapped[str] = mapped_column(String(4), nullable=False)  # YYYY
    last_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (UniqueConstraint("doc_type", "year", name="uq_doc_seq_doc_type_year"),)
