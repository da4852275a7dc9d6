from marketplace.models.domain import (
    RFQ_SPECIFICATION_FIELDS,
    SALES_ORDER_PIPELINE,
    ActorRole,
    AuditLog,
    DocumentYearlySequence,
    EntityType,
    LifecycleEvent,
    PaymentStatus,
    PurchaseOrder,
    PurchaseOrderStatus,
    QualityCheckStatus,
    Rfq,
    RfqAssignment,
    RfqAssignmentStatus,
    RfqStatus,
    SalesOrder,
    SalesOrderStatus,
    SalesQuote,
    SalesQuoteStatus,
    SupplierQuote,
    SupplierQuoteStatus,
)

__all__ = [
    "RFQ_SPECIFICATION_FIELDS",
    "SALES_ORDER_PIPELINE",
    "ActorRole",
    "AuditLog",
    "DocumentYearlySequence",
    "EntityType",
    "LifecycleEvent",
    "PaymentStatus",
    "PurchaseOrder",
    "PurchaseOrderStatus",
    "QualityCheckStatus",
    "Rfq",
    "RfqAssignment",
    "RfqAssignmentStatus",
    "RfqStatus",
    "SalesOrder",
    "SalesOrderStatus",
    "SalesQuote",
    "SalesQuoteStatus",
    "SupplierQuote",
    "SupplierQuoteStatus",
]
