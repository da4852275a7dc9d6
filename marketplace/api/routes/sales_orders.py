# ruff: noqa: B008

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from marketplace.api.deps import get_current_actor, require_roles
from marketplace.core.security import Actor
from marketplace.database import get_db
from marketplace.models import ActorRole, EntityType
from marketplace.schemas import (
    QualityCheckDecision,
    RfqRead,
    SalesOrderInvoiceUpload,
    SalesOrderRead,
    SalesOrderStatusUpdate,
    SalesOrderTrackingUpdate,
)
from marketplace.services import archive as archive_controller
from marketplace.services import lifecycle
from marketplace.services.reorder import reorder

router = APIRouter(prefix="/sales-orders", tags=["sales_orders"])

_list_roles_dep = require_roles(ActorRole.admin, ActorRole.customer)


@router.get("", response_model=List[SalesOrderRead])
def list_sales_orders(
    archived: bool = Query(False),
    customer_id: Optional[str] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_db),
    actor: Actor = Depends(_list_roles_dep),
):
    # Customers only ever list their own orders.
    if actor.role == ActorRole.customer:
        customer_id = actor.id
    return archive_controller.list_sales_orders(
        db, archived=archived, customer_id=customer_id, limit=limit
    )


@router.get("/{order_id}", response_model=SalesOrderRead)
def get_sales_order(
    order_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.get_sales_order(db, order_id, actor)


@router.post("/{order_id}/status", response_model=SalesOrderRead)
def advance_order_status(
    order_id: str,
    payload: SalesOrderStatusUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.advance_order_status(
        db,
        order_id,
        payload.status,
        actor,
        tracking_number=payload.tracking_number,
        shipping_carrier=payload.shipping_carrier,
    )


@router.post("/{order_id}/payment", response_model=SalesOrderRead)
def mark_paid(
    order_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.mark_paid(db, order_id, actor)


@router.post("/{order_id}/invoice", response_model=SalesOrderRead)
def upload_order_invoice(
    order_id: str,
    payload: SalesOrderInvoiceUpload,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.upload_order_invoice(db, order_id, actor, payload.invoice_url)


@router.post("/{order_id}/tracking", response_model=SalesOrderRead)
def update_tracking(
    order_id: str,
    payload: SalesOrderTrackingUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.update_tracking(
        db,
        order_id,
        actor,
        tracking_number=payload.tracking_number,
        shipping_carrier=payload.shipping_carrier,
    )


@router.post("/{order_id}/quality-check", response_model=SalesOrderRead)
def approve_quality_check(
    order_id: str,
    payload: QualityCheckDecision,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.approve_quality_check(
        db, order_id, actor, approved=payload.approved, notes=payload.notes
    )


@router.post("/{order_id}/archive", response_model=SalesOrderRead)
def archive_sales_order(
    order_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return archive_controller.archive(db, EntityType.sales_order, order_id, actor)


@router.post("/{order_id}/reopen", response_model=SalesOrderRead)
def reopen_sales_order(
    order_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return archive_controller.reopen(db, EntityType.sales_order, order_id, actor)


@router.post("/{order_id}/reorder", response_model=RfqRead, status_code=status.HTTP_201_CREATED)
def reorder_sales_order(
    order_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return reorder(db, order_id, actor)
