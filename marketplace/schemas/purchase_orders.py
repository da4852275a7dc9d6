from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from marketplace.models.domain import PurchaseOrderStatus

PurchaseOrderProgress = Literal["start_production", "ship", "deliver"]


class PurchaseOrderCreate(BaseModel):
    sales_quote_id: str
    total_amount: Optional[float] = Field(None, gt=0)
    delivery_date: Optional[datetime] = None
    notes: Optional[str] = None
    po_file_url: Optional[str] = None


class PurchaseOrderTransition(BaseModel):
    transition: PurchaseOrderProgress


class PurchaseOrderReason(BaseModel):
    reason: Optional[str] = Field(None, max_length=4000)


class SupplierInvoiceUpload(BaseModel):
    invoice_url: str = Field(..., min_length=1)


class PurchaseOrderRead(BaseModel):
    id: str
    order_number: str
    source_sales_quote_id: str
    supplier_quote_id: Optional[str] = None
    rfq_id: str
    supplier_id: str
    total_amount: float
    delivery_date: Optional[datetime] = None
    notes: Optional[str] = None
    po_file_url: Optional[str] = None
    status: PurchaseOrderStatus
    supplier_invoice_url: Optional[str] = None
    invoice_uploaded_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    is_archived: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
