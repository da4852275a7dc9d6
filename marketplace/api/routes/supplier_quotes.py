# ruff: noqa: B008

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from marketplace.api.deps import get_current_actor
from marketplace.core.security import Actor
from marketplace.database import get_db
from marketplace.schemas import SupplierQuoteDecision, SupplierQuoteRead
from marketplace.services import lifecycle

router = APIRouter(prefix="/supplier-quotes", tags=["supplier_quotes"])


@router.post("/{quote_id}/select", response_model=SupplierQuoteRead)
def select_supplier_quote(
    quote_id: str,
    payload: Optional[SupplierQuoteDecision] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.select_supplier_quote(
        db, quote_id, actor, feedback=payload.feedback if payload else None
    )


@router.post("/{quote_id}/reject", response_model=SupplierQuoteRead)
def reject_supplier_quote(
    quote_id: str,
    payload: Optional[SupplierQuoteDecision] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.reject_supplier_quote(
        db, quote_id, actor, feedback=payload.feedback if payload else None
    )
