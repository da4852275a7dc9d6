from marketplace.schemas.files import StoredFileRead
from marketplace.schemas.orders import (
    QualityCheckDecision,
    SalesOrderInvoiceUpload,
    SalesOrderRead,
    SalesOrderStatusUpdate,
    SalesOrderTrackingUpdate,
)
from marketplace.schemas.purchase_orders import (
    PurchaseOrderCreate,
    PurchaseOrderRead,
    PurchaseOrderReason,
    PurchaseOrderTransition,
    SupplierInvoiceUpload,
)
from marketplace.schemas.quotes import (
    PurchaseOrderAttach,
    SalesQuoteConvert,
    SalesQuoteCustomerRead,
    SalesQuoteDecline,
    SalesQuoteOverride,
    SalesQuotePublish,
    SalesQuoteRead,
    SupplierQuoteCreate,
    SupplierQuoteDecision,
    SupplierQuoteRead,
)
from marketplace.schemas.rfqs import RfqAssign, RfqAssignmentRead, RfqCancel, RfqCreate, RfqRead

__all__ = [
    "PurchaseOrderAttach",
    "PurchaseOrderCreate",
    "PurchaseOrderRead",
    "PurchaseOrderReason",
    "PurchaseOrderTransition",
    "QualityCheckDecision",
    "RfqAssign",
    "RfqAssignmentRead",
    "RfqCancel",
    "RfqCreate",
    "RfqRead",
    "SalesOrderInvoiceUpload",
    "SalesOrderRead",
    "SalesOrderStatusUpdate",
    "SalesOrderTrackingUpdate",
    "SalesQuoteConvert",
    "SalesQuoteCustomerRead",
    "SalesQuoteDecline",
    "SalesQuoteOverride",
    "SalesQuotePublish",
    "SalesQuoteRead",
    "StoredFileRead",
    "SupplierInvoiceUpload",
    "SupplierQuoteCreate",
    "SupplierQuoteDecision",
    "SupplierQuoteRead",
]
