# ruff: noqa: B008

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from marketplace.api.deps import get_current_actor, require_roles
from marketplace.core.security import Actor
from marketplace.database import get_db
from marketplace.models import ActorRole, RfqStatus
from marketplace.schemas import (
    RfqAssign,
    RfqAssignmentRead,
    RfqCancel,
    RfqCreate,
    RfqRead,
    SalesQuotePublish,
    SalesQuoteRead,
    SupplierQuoteCreate,
    SupplierQuoteRead,
)
from marketplace.services import lifecycle

router = APIRouter(prefix="/rfqs", tags=["rfqs"])

_admin_dep = require_roles(ActorRole.admin)


@router.post("", response_model=RfqRead, status_code=status.HTTP_201_CREATED)
def create_rfq(
    payload: RfqCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.create_rfq(db, actor, payload.model_dump())


@router.get("", response_model=List[RfqRead])
def list_rfqs(
    status_filter: Optional[RfqStatus] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.list_rfqs(db, actor, status=status_filter, limit=limit)


@router.get("/{rfq_id}", response_model=RfqRead)
def get_rfq(
    rfq_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.get_rfq(db, rfq_id, actor)


@router.post("/{rfq_id}/review", response_model=RfqRead)
def review_rfq(
    rfq_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.review_rfq(db, rfq_id, actor)


@router.post("/{rfq_id}/assign", response_model=RfqRead)
def assign_suppliers(
    rfq_id: str,
    payload: RfqAssign,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.assign_suppliers(db, rfq_id, payload.supplier_ids, actor)


@router.get("/{rfq_id}/assignments", response_model=List[RfqAssignmentRead])
def list_assignments(
    rfq_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(_admin_dep),
):
    lifecycle.get_entity(db, "rfq", rfq_id)
    return lifecycle.list_assignments(db, rfq_id)


@router.post("/{rfq_id}/cancel", response_model=RfqRead)
def cancel_rfq(
    rfq_id: str,
    payload: Optional[RfqCancel] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.cancel_rfq(db, rfq_id, actor, reason=payload.reason if payload else None)


@router.post(
    "/{rfq_id}/supplier-quotes",
    response_model=SupplierQuoteRead,
    status_code=status.HTTP_201_CREATED,
)
def submit_supplier_quote(
    rfq_id: str,
    payload: SupplierQuoteCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.submit_supplier_quote(db, rfq_id, actor, payload.model_dump())


@router.get("/{rfq_id}/supplier-quotes", response_model=List[SupplierQuoteRead])
def list_supplier_quotes(
    rfq_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.list_supplier_quotes(db, rfq_id, actor)


@router.post(
    "/{rfq_id}/sales-quote",
    response_model=SalesQuoteRead,
    status_code=status.HTTP_201_CREATED,
)
def publish_sales_quote(
    rfq_id: str,
    payload: SalesQuotePublish,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.publish_sales_quote(
        db,
        rfq_id,
        payload.supplier_quote_id,
        payload.markup_percent,
        actor,
        notes=payload.notes,
    )
