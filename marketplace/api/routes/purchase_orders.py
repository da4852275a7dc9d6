# ruff: noqa: B008

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from marketplace.api.deps import get_current_actor, require_roles
from marketplace.core.security import Actor
from marketplace.database import get_db
from marketplace.models import ActorRole, EntityType
from marketplace.schemas import (
    PurchaseOrderCreate,
    PurchaseOrderRead,
    PurchaseOrderReason,
    PurchaseOrderTransition,
    SupplierInvoiceUpload,
)
from marketplace.services import archive as archive_controller
from marketplace.services import lifecycle

router = APIRouter(prefix="/purchase-orders", tags=["purchase_orders"])

_list_roles_dep = require_roles(ActorRole.admin, ActorRole.supplier)


@router.post("", response_model=PurchaseOrderRead, status_code=status.HTTP_201_CREATED)
def create_purchase_order(
    payload: PurchaseOrderCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.create_purchase_order(
        db,
        payload.sales_quote_id,
        actor,
        total_amount=payload.total_amount,
        delivery_date=payload.delivery_date,
        notes=payload.notes,
        po_file_url=payload.po_file_url,
    )


@router.get("", response_model=List[PurchaseOrderRead])
def list_purchase_orders(
    archived: bool = Query(False),
    supplier_id: Optional[str] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_db),
    actor: Actor = Depends(_list_roles_dep),
):
    # Suppliers only ever list their own purchase orders.
    if actor.role == ActorRole.supplier:
        supplier_id = actor.id
    return archive_controller.list_purchase_orders(
        db, archived=archived, supplier_id=supplier_id, limit=limit
    )


@router.get("/{po_id}", response_model=PurchaseOrderRead)
def get_purchase_order(
    po_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.get_purchase_order(db, po_id, actor)


@router.post("/{po_id}/accept", response_model=PurchaseOrderRead)
def accept_purchase_order(
    po_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.accept_purchase_order(db, po_id, actor)


@router.post("/{po_id}/decline", response_model=PurchaseOrderRead)
def decline_purchase_order(
    po_id: str,
    payload: Optional[PurchaseOrderReason] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.decline_purchase_order(
        db, po_id, actor, reason=payload.reason if payload else None
    )


@router.post("/{po_id}/transition", response_model=PurchaseOrderRead)
def advance_purchase_order(
    po_id: str,
    payload: PurchaseOrderTransition,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.advance_purchase_order(db, po_id, payload.transition, actor)


@router.post("/{po_id}/cancel", response_model=PurchaseOrderRead)
def cancel_purchase_order(
    po_id: str,
    payload: Optional[PurchaseOrderReason] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.cancel_purchase_order(
        db, po_id, actor, reason=payload.reason if payload else None
    )


@router.post("/{po_id}/invoice", response_model=PurchaseOrderRead)
def upload_supplier_invoice(
    po_id: str,
    payload: SupplierInvoiceUpload,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.upload_supplier_invoice(db, po_id, actor, invoice_url=payload.invoice_url)


@router.post("/{po_id}/archive", response_model=PurchaseOrderRead)
def archive_purchase_order(
    po_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return archive_controller.archive(db, EntityType.purchase_order, po_id, actor)


@router.post("/{po_id}/reopen", response_model=PurchaseOrderRead)
def reopen_purchase_order(
    po_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return archive_controller.reopen(db, EntityType.purchase_order, po_id, actor)
