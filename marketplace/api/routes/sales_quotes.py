# ruff: noqa: B008

from typing import Optional, Union

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from marketplace.api.deps import get_current_actor, request_id_of
from marketplace.core.security import Actor
from marketplace.database import get_db
from marketplace.models import ActorRole
from marketplace.schemas import (
    PurchaseOrderAttach,
    SalesOrderRead,
    SalesQuoteConvert,
    SalesQuoteCustomerRead,
    SalesQuoteDecline,
    SalesQuoteOverride,
    SalesQuoteRead,
)
from marketplace.services import lifecycle

router = APIRouter(prefix="/sales-quotes", tags=["sales_quotes"])

SalesQuoteView = Union[SalesQuoteRead, SalesQuoteCustomerRead]


def _render(quote, actor: Actor):
    # Customers never see the supplier behind the quote or the markup applied.
    if actor.role == ActorRole.customer:
        return SalesQuoteCustomerRead.model_validate(quote)
    return SalesQuoteRead.model_validate(quote)


@router.get("/{quote_id}", response_model=SalesQuoteView)
def get_sales_quote(
    quote_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return _render(lifecycle.get_sales_quote(db, quote_id, actor), actor)


@router.post("/{quote_id}/accept", response_model=SalesQuoteView)
def accept_quote(
    quote_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return _render(lifecycle.accept_quote(db, quote_id, actor), actor)


@router.post("/{quote_id}/decline", response_model=SalesQuoteView)
def decline_quote(
    quote_id: str,
    payload: Optional[SalesQuoteDecline] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    quote = lifecycle.decline_quote(db, quote_id, actor, reason=payload.reason if payload else None)
    return _render(quote, actor)


@router.post("/{quote_id}/purchase-order", response_model=SalesQuoteView)
def attach_purchase_order(
    quote_id: str,
    payload: PurchaseOrderAttach,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    quote = lifecycle.attach_purchase_order(
        db, quote_id, actor, file_url=payload.file_url, po_number=payload.po_number
    )
    return _render(quote, actor)


@router.post("/{quote_id}/override-status", response_model=SalesQuoteRead)
def override_sales_quote_status(
    quote_id: str,
    payload: SalesQuoteOverride,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.override_sales_quote_status(
        db,
        quote_id,
        payload.status,
        actor,
        reason=payload.reason,
        request_id=request_id_of(request),
    )


@router.post(
    "/{quote_id}/convert",
    response_model=SalesOrderRead,
    status_code=status.HTTP_201_CREATED,
)
def convert_to_sales_order(
    quote_id: str,
    payload: Optional[SalesQuoteConvert] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.convert_to_sales_order(
        db,
        quote_id,
        actor,
        customer_po_number=payload.customer_po_number if payload else None,
        estimated_completion=payload.estimated_completion if payload else None,
    )
