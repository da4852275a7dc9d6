from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from marketplace.models.domain import SalesQuoteStatus, SupplierQuoteStatus


class SupplierQuoteCreate(BaseModel):
    price: float = Field(..., gt=0)
    lead_time_days: int = Field(..., ge=0)
    currency: str = Field("USD", min_length=3, max_length=8)
    notes: Optional[str] = None
    payment_terms: Optional[str] = Field(None, max_length=128)
    valid_until: Optional[datetime] = None


class SupplierQuoteDecision(BaseModel):
    feedback: Optional[str] = Field(None, max_length=4000)


class SupplierQuoteRead(BaseModel):
    id: str
    rfq_id: str
    supplier_id: str
    price: float
    lead_time_days: int
    currency: str
    notes: Optional[str] = None
    payment_terms: Optional[str] = None
    valid_until: Optional[datetime] = None
    status: SupplierQuoteStatus
    admin_feedback: Optional[str] = None
    submitted_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SalesQuotePublish(BaseModel):
    supplier_quote_id: str
    markup_percent: float = Field(..., ge=0, le=1000)
    notes: Optional[str] = None


class SalesQuoteDecline(BaseModel):
    reason: Optional[str] = Field(None, max_length=4000)


class PurchaseOrderAttach(BaseModel):
    file_url: str = Field(..., min_length=1)
    po_number: Optional[str] = Field(None, max_length=64)


class SalesQuoteOverride(BaseModel):
    status: SalesQuoteStatus
    reason: str = Field(..., min_length=3, max_length=4000)


class SalesQuoteConvert(BaseModel):
    customer_po_number: Optional[str] = Field(None, max_length=64)
    estimated_completion: Optional[datetime] = None


class SalesQuoteRead(BaseModel):
    id: str
    quote_number: str
    rfq_id: str
    supplier_quote_id: Optional[str] = None
    customer_id: str
    amount: float
    currency: str
    markup_percent: Optional[float] = None
    valid_until: datetime
    estimated_delivery_date: Optional[datetime] = None
    notes: Optional[str] = None
    status: SalesQuoteStatus
    customer_response: Optional[str] = None
    purchase_order_url: Optional[str] = None
    purchase_order_number: Optional[str] = None
    responded_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SalesQuoteCustomerRead(BaseModel):
    """Customer-facing view: no supplier linkage or markup."""

    id: str
    quote_number: str
    rfq_id: str
    amount: float
    currency: str
    valid_until: datetime
    estimated_delivery_date: Optional[datetime] = None
    notes: Optional[str] = None
    status: SalesQuoteStatus
    purchase_order_url: Optional[str] = None
    purchase_order_number: Optional[str] = None
    accepted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
