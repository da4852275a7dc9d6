from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from marketplace.models.domain import PaymentStatus, QualityCheckStatus, SalesOrderStatus


class SalesOrderRead(BaseModel):
    id: str
    order_number: str
    rfq_id: str
    quote_id: str
    customer_id: str
    project_name: str
    amount: float
    currency: str
    customer_purchase_order_number: Optional[str] = None
    order_status: SalesOrderStatus
    payment_status: PaymentStatus
    paid_at: Optional[datetime] = None
    is_archived: bool
    archived_at: Optional[datetime] = None
    tracking_number: Optional[str] = None
    shipping_carrier: Optional[str] = None
    invoice_url: Optional[str] = None
    invoice_uploaded_at: Optional[datetime] = None
    estimated_completion: Optional[datetime] = None
    quality_check_status: QualityCheckStatus
    quality_check_notes: Optional[str] = None
    customer_approved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SalesOrderStatusUpdate(BaseModel):
    status: SalesOrderStatus
    tracking_number: Optional[str] = Field(None, max_length=128)
    shipping_carrier: Optional[str] = Field(None, max_length=128)


class SalesOrderTrackingUpdate(BaseModel):
    tracking_number: str = Field(..., min_length=1, max_length=128)
    shipping_carrier: Optional[str] = Field(None, max_length=128)


class QualityCheckDecision(BaseModel):
    approved: bool
    notes: Optional[str] = Field(None, max_length=4000)


class SalesOrderInvoiceUpload(BaseModel):
    invoice_url: str = Field(..., min_length=1)
