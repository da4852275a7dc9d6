from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from marketplace.models.domain import RfqAssignmentStatus, RfqStatus


class RfqCreate(BaseModel):
    project_name: str = Field(..., min_length=1, max_length=255)
    material: str = Field(..., min_length=1, max_length=128)
    material_grade: Optional[str] = Field(None, max_length=128)
    finishing: Optional[str] = Field(None, max_length=128)
    tolerance: str = Field(..., min_length=1, max_length=64)
    quantity: int = Field(..., gt=0)
    manufacturing_process: Optional[str] = Field(None, max_length=64)
    manufacturing_subprocess: Optional[str] = Field(None, max_length=64)
    international_manufacturing_ok: bool = False
    notes: Optional[str] = None
    special_instructions: Optional[str] = None


class RfqRead(BaseModel):
    id: str
    owner_customer_id: str
    project_name: str
    material: str
    material_grade: Optional[str] = None
    finishing: Optional[str] = None
    tolerance: str
    quantity: int
    manufacturing_process: Optional[str] = None
    manufacturing_subprocess: Optional[str] = None
    international_manufacturing_ok: bool
    notes: Optional[str] = None
    special_instructions: Optional[str] = None
    status: RfqStatus
    origin_order_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RfqAssign(BaseModel):
    supplier_ids: List[str] = Field(..., min_length=1)


class RfqCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class RfqAssignmentRead(BaseModel):
    rfq_id: str
    supplier_id: str
    status: RfqAssignmentStatus
    assigned_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
