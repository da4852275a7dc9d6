"""Lifecycle orchestrator.

Every public function here is one unit of work:

1. load the entity and authorise the actor (role, then ownership),
2. ask the pure validator whether the transition is legal,
3. apply it with a conditional UPDATE so a concurrent writer cannot slip in
   between the check and the write,
4. append a `LifecycleEvent` row in the same transaction and commit,
5. log and notify after the commit, and return the refreshed entity.

Any failure rolls the session back before the typed error propagates.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterator, Mapping
from urllib.parse import urlparse

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace import models
from marketplace.config import settings
from marketplace.core.security import Actor
from marketplace.models import (
    ActorRole,
    EntityType,
    PaymentStatus,
    PurchaseOrderStatus,
    QualityCheckStatus,
    RfqAssignmentStatus,
    RfqStatus,
    SalesOrderStatus,
    SalesQuoteStatus,
    SupplierQuoteStatus,
)
from marketplace.services import document_numbering, file_store, role_gate
from marketplace.services.audit import audit_event
from marketplace.services.entity_transitions import (
    as_utc,
    atomic_transition,
    coalesce_datetime,
    utc_now,
)
from marketplace.services.lifecycle_errors import (
    DuplicateCreation,
    EntityNotFound,
    IllegalFromState,
    NotOwner,
    PreconditionFailed,
    RoleNotPermitted,
    UnknownTransition,
)
from marketplace.services.notifications import emit_lifecycle_notification
from marketplace.services.transition_validator import (
    Denied,
    transition_for_order_status,
    validate,
)

logger = logging.getLogger("marketplace.lifecycle")

ADMIN_RECIPIENTS = ("role:admin",)

_RFQ_CREATE_FIELDS = (
    "project_name",
    "material",
    "material_grade",
    "finishing",
    "tolerance",
    "quantity",
    "manufacturing_process",
    "manufacturing_subprocess",
    "international_manufacturing_ok",
    "notes",
    "special_instructions",
)
_RFQ_REQUIRED_FIELDS = ("project_name", "material", "tolerance", "quantity")

_MODELS: dict[EntityType, type] = {
    EntityType.rfq: models.Rfq,
    EntityType.supplier_quote: models.SupplierQuote,
    EntityType.sales_quote: models.SalesQuote,
    EntityType.purchase_order: models.PurchaseOrder,
    EntityType.sales_order: models.SalesOrder,
}

# Purchase-order production steps a supplier drives through `advance_purchase_order`.
PURCHASE_ORDER_PROGRESS_TRANSITIONS = frozenset({"start_production", "ship", "deliver"})


# ---------------------------------------------------------------------------
# Plumbing
# ---------------------------------------------------------------------------


@contextmanager
def unit_of_work(db: Session) -> Iterator[None]:
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise


def get_entity(db: Session, entity_type: EntityType, entity_id: str):
    entity_type = EntityType(entity_type)
    row = db.get(_MODELS[entity_type], str(entity_id))
    if row is None:
        raise EntityNotFound(
            f"{entity_type.value} {entity_id} not found",
            entity_type=entity_type.value,
            entity_id=str(entity_id),
        )
    return row


def reload(db: Session, entity_type: EntityType, entity_id: str):
    """Authoritative post-commit state (bulk UPDATEs bypass the identity map)."""

    row = get_entity(db, entity_type, entity_id)
    db.refresh(row)
    return row


def authorize(
    entity_type: EntityType,
    transition: str,
    actor: Actor,
    *,
    entity_id: str,
    owner_id: str | None = None,
    check_owner: bool = False,
) -> None:
    if not role_gate.is_permitted(entity_type, transition, actor.role):
        raise RoleNotPermitted(
            f"role '{actor.role.value}' may not {transition} a {entity_type.value}",
            entity_type=entity_type.value,
            entity_id=entity_id,
            details={"transition": transition, "role": actor.role.value},
        )
    if check_owner:
        role_gate.assert_owner(actor, owner_id, entity_type=entity_type, entity_id=entity_id)


def require_transition(
    entity_type: EntityType,
    current_state: Any,
    transition: str,
    actor: Actor,
    *,
    entity_id: str,
    archived: bool = False,
):
    result = validate(entity_type, current_state, transition, actor.role, archived=archived)
    if isinstance(result, Denied):
        raise result.to_error(entity_type=entity_type, entity_id=entity_id)
    return result.next_state


def guarded_transition(
    db: Session,
    *,
    entity_type: EntityType,
    entity_id: str,
    transition: str,
    to_status: Any,
    allowed_from: Any,
    updates: dict[str, Any] | None = None,
    extra_filters: tuple = (),
    stale_error: type = IllegalFromState,
) -> None:
    """Conditional UPDATE; zero rows means another writer got there first."""

    if isinstance(allowed_from, (set, frozenset, list, tuple)):
        allowed = list(allowed_from)
    else:
        allowed = [allowed_from]

    result = atomic_transition(
        db=db,
        entity_type=entity_type,
        entity_id=entity_id,
        to_status=to_status,
        allowed_from=allowed,
        updates=updates,
        extra_filters=extra_filters,
    )
    if not result.updated:
        raise stale_error(
            f"{entity_type.value} {entity_id} changed concurrently; '{transition}' not applied",
            entity_type=entity_type.value,
            entity_id=entity_id,
            details={"transition": transition},
        )


def record_transition(
    db: Session,
    *,
    entity_type: EntityType,
    entity_id: str,
    transition: str,
    from_status: Any,
    to_status: Any,
    actor: Actor | None,
    payload: dict[str, Any] | None = None,
) -> models.LifecycleEvent:
    ev = models.LifecycleEvent(
        entity_type=entity_type,
        entity_id=str(entity_id),
        transition=transition,
        from_status=getattr(from_status, "value", from_status),
        to_status=getattr(to_status, "value", to_status),
        actor_id=actor.id if actor else None,
        actor_role=actor.role.value if actor else None,
        payload=payload or None,
    )
    db.add(ev)
    return ev


def log_transition(
    *,
    entity_type: EntityType,
    entity_id: str,
    transition: str,
    from_status: Any,
    to_status: Any,
    actor: Actor | None,
) -> None:
    logger.info(
        "lifecycle_transition",
        extra={
            "entity_type": entity_type.value,
            "entity_id": str(entity_id),
            "transition": transition,
            "from_status": getattr(from_status, "value", from_status),
            "to_status": getattr(to_status, "value", to_status),
            "actor_id": actor.id if actor else None,
            "actor_role": actor.role.value if actor else None,
        },
    )


def _log_noop(event: str, entity_type: EntityType, entity_id: str, **fields: Any) -> None:
    logger.info(
        event,
        extra={"entity_type": entity_type.value, "entity_id": str(entity_id), **fields},
    )


def apply_markup(price: float, markup_percent: float) -> float:
    amount = Decimal(str(price)) * (Decimal(1) + Decimal(str(markup_percent)) / Decimal(100))
    return float(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _precondition(message: str, entity_type: EntityType, entity_id: str, **details: Any):
    return PreconditionFailed(
        message, entity_type=entity_type.value, entity_id=str(entity_id), details=details
    )


# ---------------------------------------------------------------------------
# RFQ
# ---------------------------------------------------------------------------


def create_rfq(db: Session, customer: Actor, data: Mapping[str, Any]) -> models.Rfq:
    if customer.role != ActorRole.customer:
        raise RoleNotPermitted(
            "only customers submit RFQs",
            entity_type=EntityType.rfq.value,
            details={"role": customer.role.value},
        )

    missing = [k for k in _RFQ_REQUIRED_FIELDS if data.get(k) in (None, "")]
    if missing:
        raise PreconditionFailed(
            f"missing required RFQ fields: {', '.join(missing)}",
            entity_type=EntityType.rfq.value,
            details={"missing": missing},
        )
    values = {k: data[k] for k in _RFQ_CREATE_FIELDS if k in data}
    try:
        quantity = int(values["quantity"])
    except (TypeError, ValueError):
        quantity = 0
    if quantity <= 0:
        raise PreconditionFailed("quantity must be positive", entity_type=EntityType.rfq.value)
    values["quantity"] = quantity

    rfq = models.Rfq(owner_customer_id=customer.id, status=RfqStatus.submitted, **values)
    with unit_of_work(db):
        db.add(rfq)
        db.flush()
        record_transition(
            db,
            entity_type=EntityType.rfq,
            entity_id=rfq.id,
            transition="submit",
            from_status=None,
            to_status=RfqStatus.submitted,
            actor=customer,
        )

    log_transition(
        entity_type=EntityType.rfq,
        entity_id=rfq.id,
        transition="submit",
        from_status=None,
        to_status=RfqStatus.submitted,
        actor=customer,
    )
    emit_lifecycle_notification(
        "rfq_submitted",
        entity_type=EntityType.rfq.value,
        entity_id=rfq.id,
        recipients=ADMIN_RECIPIENTS,
        payload={"project_name": rfq.project_name},
    )
    return reload(db, EntityType.rfq, rfq.id)


def _simple_rfq_transition(
    db: Session,
    rfq_id: str,
    transition: str,
    actor: Actor,
    *,
    updates: dict[str, Any] | None = None,
    payload: dict[str, Any] | None = None,
) -> tuple[models.Rfq, RfqStatus, RfqStatus]:
    rfq = get_entity(db, EntityType.rfq, rfq_id)
    authorize(EntityType.rfq, transition, actor, entity_id=rfq.id)
    from_status = rfq.status
    to_status = require_transition(
        EntityType.rfq, from_status, transition, actor, entity_id=rfq.id
    )
    with unit_of_work(db):
        guarded_transition(
            db,
            entity_type=EntityType.rfq,
            entity_id=rfq.id,
            transition=transition,
            to_status=to_status,
            allowed_from=from_status,
            updates=updates,
        )
        record_transition(
            db,
            entity_type=EntityType.rfq,
            entity_id=rfq.id,
            transition=transition,
            from_status=from_status,
            to_status=to_status,
            actor=actor,
            payload=payload,
        )
    log_transition(
        entity_type=EntityType.rfq,
        entity_id=rfq.id,
        transition=transition,
        from_status=from_status,
        to_status=to_status,
        actor=actor,
    )
    return reload(db, EntityType.rfq, rfq.id), from_status, to_status


def review_rfq(db: Session, rfq_id: str, admin: Actor) -> models.Rfq:
    rfq, _, _ = _simple_rfq_transition(db, rfq_id, "review", admin)
    return rfq


def cancel_rfq(db: Session, rfq_id: str, admin: Actor, *, reason: str | None = None) -> models.Rfq:
    rfq, _, _ = _simple_rfq_transition(
        db, rfq_id, "cancel", admin, payload={"reason": reason} if reason else None
    )
    emit_lifecycle_notification(
        "rfq_cancelled",
        entity_type=EntityType.rfq.value,
        entity_id=rfq.id,
        recipients=[rfq.owner_customer_id],
        payload={"reason": reason},
    )
    return rfq


def assign_suppliers(
    db: Session,
    rfq_id: str,
    supplier_ids: list[str],
    admin: Actor,
    *,
    _retry: bool = True,
) -> models.Rfq:
    """Send the RFQ to suppliers for bidding.

    Re-assigning an already assigned supplier keeps the existing assignment,
    so the call is safe to repeat with an overlapping list.
    """

    rfq = get_entity(db, EntityType.rfq, rfq_id)
    authorize(EntityType.rfq, "assign_to_suppliers", admin, entity_id=rfq.id)

    wanted: list[str] = []
    for raw in supplier_ids or []:
        s = str(raw).strip()
        if s and s not in wanted:
            wanted.append(s)
    if not wanted:
        raise _precondition("at least one supplier is required", EntityType.rfq, rfq.id)

    from_status = rfq.status
    to_status = require_transition(
        EntityType.rfq, from_status, "assign_to_suppliers", admin, entity_id=rfq.id
    )

    existing = {
        a.supplier_id
        for a in db.query(models.RfqAssignment)
        .filter(models.RfqAssignment.rfq_id == rfq.id)
        .filter(models.RfqAssignment.supplier_id.in_(wanted))
        .all()
    }
    new_suppliers = [s for s in wanted if s not in existing]

    try:
        with unit_of_work(db):
            guarded_transition(
                db,
                entity_type=EntityType.rfq,
                entity_id=rfq.id,
                transition="assign_to_suppliers",
                to_status=to_status,
                allowed_from=from_status,
            )
            for supplier_id in new_suppliers:
                db.add(
                    models.RfqAssignment(
                        rfq_id=rfq.id,
                        supplier_id=supplier_id,
                        assigned_by=admin.id,
                        status=RfqAssignmentStatus.assigned,
                    )
                )
            db.flush()
            record_transition(
                db,
                entity_type=EntityType.rfq,
                entity_id=rfq.id,
                transition="assign_to_suppliers",
                from_status=from_status,
                to_status=to_status,
                actor=admin,
                payload={"supplier_ids": wanted, "new_supplier_ids": new_suppliers},
            )
    except IntegrityError:
        # A concurrent call assigned one of the same suppliers; retry against fresh state.
        if not _retry:
            raise
        return assign_suppliers(db, rfq_id, supplier_ids, admin, _retry=False)

    log_transition(
        entity_type=EntityType.rfq,
        entity_id=rfq_id,
        transition="assign_to_suppliers",
        from_status=from_status,
        to_status=to_status,
        actor=admin,
    )
    if new_suppliers:
        emit_lifecycle_notification(
            "rfq_assigned",
            entity_type=EntityType.rfq.value,
            entity_id=rfq_id,
            recipients=new_suppliers,
        )
    return reload(db, EntityType.rfq, rfq_id)


def list_assignments(db: Session, rfq_id: str) -> list[models.RfqAssignment]:
    return (
        db.query(models.RfqAssignment)
        .filter(models.RfqAssignment.rfq_id == str(rfq_id))
        .order_by(models.RfqAssignment.assigned_at.asc(), models.RfqAssignment.supplier_id.asc())
        .all()
    )


def get_rfq(db: Session, rfq_id: str, actor: Actor) -> models.Rfq:
    rfq = get_entity(db, EntityType.rfq, rfq_id)
    if actor.role == ActorRole.customer:
        role_gate.assert_owner(
            actor, rfq.owner_customer_id, entity_type=EntityType.rfq, entity_id=rfq.id
        )
    elif actor.role == ActorRole.supplier:
        assigned = (
            db.query(models.RfqAssignment.id)
            .filter(models.RfqAssignment.rfq_id == rfq.id)
            .filter(models.RfqAssignment.supplier_id == actor.id)
            .first()
        )
        role_gate.assert_owner(
            actor,
            actor.id if assigned else None,
            entity_type=EntityType.rfq,
            entity_id=rfq.id,
        )
    return rfq


def list_rfqs(
    db: Session,
    actor: Actor,
    *,
    status: RfqStatus | None = None,
    limit: int = 100,
) -> list[models.Rfq]:
    q = db.query(models.Rfq)
    if actor.role == ActorRole.customer:
        q = q.filter(models.Rfq.owner_customer_id == actor.id)
    elif actor.role == ActorRole.supplier:
        q = q.join(models.RfqAssignment, models.RfqAssignment.rfq_id == models.Rfq.id).filter(
            models.RfqAssignment.supplier_id == actor.id
        )
    if status is not None:
        q = q.filter(models.Rfq.status == status)
    return q.order_by(models.Rfq.created_at.desc(), models.Rfq.id.asc()).limit(limit).all()


# ---------------------------------------------------------------------------
# Supplier quotes
# ---------------------------------------------------------------------------


def submit_supplier_quote(
    db: Session,
    rfq_id: str,
    supplier: Actor,
    terms: Mapping[str, Any],
    *,
    _retry: bool = True,
) -> models.SupplierQuote:
    """Submit (or, while still pending, replace) a supplier's bid on an RFQ."""

    if supplier.role != ActorRole.supplier:
        raise RoleNotPermitted(
            "only suppliers submit quotes",
            entity_type=EntityType.supplier_quote.value,
            details={"role": supplier.role.value},
        )

    rfq = get_entity(db, EntityType.rfq, rfq_id)
    assignment = (
        db.query(models.RfqAssignment)
        .filter(models.RfqAssignment.rfq_id == rfq.id)
        .filter(models.RfqAssignment.supplier_id == supplier.id)
        .first()
    )
    if assignment is None:
        raise _precondition(
            "supplier is not assigned to this RFQ", EntityType.rfq, rfq.id, supplier_id=supplier.id
        )
    if rfq.status != RfqStatus.sent_to_suppliers:
        raise _precondition(
            f"RFQ is '{rfq.status.value}'; quotes are accepted only while sent_to_suppliers",
            EntityType.rfq,
            rfq.id,
            rfq_status=rfq.status.value,
        )

    try:
        price = float(terms["price"])
        lead_time_days = int(terms["lead_time_days"])
    except KeyError as exc:
        raise _precondition(
            f"supplier quote is missing '{exc.args[0]}'", EntityType.rfq, rfq.id
        ) from None
    except (TypeError, ValueError):
        raise _precondition(
            "price and lead time must be numbers", EntityType.rfq, rfq.id
        ) from None
    if price <= 0 or lead_time_days < 0:
        raise _precondition("price must be positive and lead time non-negative", EntityType.rfq, rfq.id)

    values = {
        "price": price,
        "lead_time_days": lead_time_days,
        "currency": terms.get("currency") or "USD",
        "notes": terms.get("notes"),
        "payment_terms": terms.get("payment_terms"),
        "valid_until": terms.get("valid_until"),
    }

    existing = (
        db.query(models.SupplierQuote)
        .filter(models.SupplierQuote.rfq_id == rfq.id)
        .filter(models.SupplierQuote.supplier_id == supplier.id)
        .first()
    )

    now = utc_now()
    if existing is not None:
        quote_id = existing.id
        transition = "resubmit"
        from_status = existing.status
        to_status = require_transition(
            EntityType.supplier_quote, from_status, transition, supplier, entity_id=existing.id
        )
        with unit_of_work(db):
            guarded_transition(
                db,
                entity_type=EntityType.supplier_quote,
                entity_id=existing.id,
                transition=transition,
                to_status=to_status,
                allowed_from=from_status,
                updates={**values, "submitted_at": now},
            )
            record_transition(
                db,
                entity_type=EntityType.supplier_quote,
                entity_id=existing.id,
                transition=transition,
                from_status=from_status,
                to_status=to_status,
                actor=supplier,
                payload={"price": price, "lead_time_days": lead_time_days},
            )
    else:
        transition = "submit"
        from_status = None
        to_status = SupplierQuoteStatus.pending
        quote = models.SupplierQuote(
            rfq_id=rfq.id,
            supplier_id=supplier.id,
            status=SupplierQuoteStatus.pending,
            submitted_at=now,
            **values,
        )
        try:
            with unit_of_work(db):
                db.add(quote)
                assignment.status = RfqAssignmentStatus.quoted
                db.flush()
                record_transition(
                    db,
                    entity_type=EntityType.supplier_quote,
                    entity_id=quote.id,
                    transition=transition,
                    from_status=None,
                    to_status=to_status,
                    actor=supplier,
                    payload={"price": price, "lead_time_days": lead_time_days},
                )
        except IntegrityError:
            # Lost a race with our own concurrent submission: replay as a resubmit.
            if not _retry:
                raise
            return submit_supplier_quote(db, rfq_id, supplier, terms, _retry=False)
        quote_id = quote.id

    log_transition(
        entity_type=EntityType.supplier_quote,
        entity_id=quote_id,
        transition=transition,
        from_status=from_status,
        to_status=to_status,
        actor=supplier,
    )
    emit_lifecycle_notification(
        "supplier_quote_submitted",
        entity_type=EntityType.supplier_quote.value,
        entity_id=quote_id,
        recipients=ADMIN_RECIPIENTS,
        payload={"rfq_id": rfq_id, "supplier_id": supplier.id},
    )
    return reload(db, EntityType.supplier_quote, quote_id)


def _supplier_quote_decision(
    db: Session,
    quote_id: str,
    transition: str,
    admin: Actor,
    *,
    feedback: str | None,
) -> models.SupplierQuote:
    sq = get_entity(db, EntityType.supplier_quote, quote_id)
    authorize(EntityType.supplier_quote, transition, admin, entity_id=sq.id)
    from_status = sq.status
    to_status = require_transition(
        EntityType.supplier_quote, from_status, transition, admin, entity_id=sq.id
    )
    updates: dict[str, Any] = {
        "responded_at": coalesce_datetime(models.SupplierQuote.responded_at, utc_now())
    }
    if feedback is not None:
        updates["admin_feedback"] = feedback

    with unit_of_work(db):
        guarded_transition(
            db,
            entity_type=EntityType.supplier_quote,
            entity_id=sq.id,
            transition=transition,
            to_status=to_status,
            allowed_from=from_status,
            updates=updates,
        )
        record_transition(
            db,
            entity_type=EntityType.supplier_quote,
            entity_id=sq.id,
            transition=transition,
            from_status=from_status,
            to_status=to_status,
            actor=admin,
            payload={"feedback": feedback} if feedback else None,
        )
    log_transition(
        entity_type=EntityType.supplier_quote,
        entity_id=quote_id,
        transition=transition,
        from_status=from_status,
        to_status=to_status,
        actor=admin,
    )
    sq = reload(db, EntityType.supplier_quote, quote_id)
    emit_lifecycle_notification(
        f"supplier_quote_{to_status.value}",
        entity_type=EntityType.supplier_quote.value,
        entity_id=sq.id,
        recipients=[sq.supplier_id],
        payload={"rfq_id": sq.rfq_id, "feedback": feedback},
    )
    return sq


def select_supplier_quote(
    db: Session, quote_id: str, admin: Actor, *, feedback: str | None = None
) -> models.SupplierQuote:
    return _supplier_quote_decision(db, quote_id, "select", admin, feedback=feedback)


def reject_supplier_quote(
    db: Session, quote_id: str, admin: Actor, *, feedback: str | None = None
) -> models.SupplierQuote:
    return _supplier_quote_decision(db, quote_id, "reject", admin, feedback=feedback)


def list_supplier_quotes(db: Session, rfq_id: str, actor: Actor) -> list[models.SupplierQuote]:
    get_entity(db, EntityType.rfq, rfq_id)
    if actor.role == ActorRole.customer:
        # Customers only ever see the marked-up sales quote.
        raise RoleNotPermitted(
            "customers cannot read supplier quotes",
            entity_type=EntityType.supplier_quote.value,
            details={"role": actor.role.value},
        )
    q = db.query(models.SupplierQuote).filter(models.SupplierQuote.rfq_id == str(rfq_id))
    if actor.role == ActorRole.supplier:
        q = q.filter(models.SupplierQuote.supplier_id == actor.id)
    return q.order_by(models.SupplierQuote.submitted_at.asc(), models.SupplierQuote.id.asc()).all()


# ---------------------------------------------------------------------------
# Sales quotes
# ---------------------------------------------------------------------------


def publish_sales_quote(
    db: Session,
    rfq_id: str,
    supplier_quote_id: str,
    markup_percent: float,
    admin: Actor,
    *,
    notes: str | None = None,
    now: datetime | None = None,
) -> models.SalesQuote:
    """Turn a chosen supplier bid into the customer-facing quote.

    The supplier quote becomes accepted and the RFQ quoted in the same
    transaction as the sales quote insert.
    """

    rfq = get_entity(db, EntityType.rfq, rfq_id)
    authorize(EntityType.rfq, "publish_quote", admin, entity_id=rfq.id)
    sq = get_entity(db, EntityType.supplier_quote, supplier_quote_id)
    if sq.rfq_id != rfq.id:
        raise _precondition(
            "supplier quote belongs to another RFQ",
            EntityType.supplier_quote,
            sq.id,
            rfq_id=rfq.id,
        )
    if markup_percent is None or float(markup_percent) < 0:
        raise _precondition("markup must be non-negative", EntityType.rfq, rfq.id)

    rfq_from = rfq.status
    rfq_to = require_transition(EntityType.rfq, rfq_from, "publish_quote", admin, entity_id=rfq.id)
    sq_from = sq.status
    sq_to = require_transition(
        EntityType.supplier_quote, sq_from, "select", admin, entity_id=sq.id
    )

    now = now or utc_now()
    price = float(sq.price)
    lead_time_days = int(sq.lead_time_days)
    customer_id = rfq.owner_customer_id
    currency = sq.currency
    amount = apply_markup(price, float(markup_percent))

    try:
        with unit_of_work(db):
            number = document_numbering.next_yearly_number(
                db,
                doc_type="sales_quote",
                prefix=document_numbering.SALES_QUOTE_PREFIX,
                now=now,
            )
            guarded_transition(
                db,
                entity_type=EntityType.rfq,
                entity_id=rfq_id,
                transition="publish_quote",
                to_status=rfq_to,
                allowed_from=rfq_from,
            )
            guarded_transition(
                db,
                entity_type=EntityType.supplier_quote,
                entity_id=supplier_quote_id,
                transition="select",
                to_status=sq_to,
                allowed_from=sq_from,
                updates={
                    "responded_at": coalesce_datetime(models.SupplierQuote.responded_at, now)
                },
                stale_error=PreconditionFailed,
            )
            quote = models.SalesQuote(
                quote_number=number.formatted,
                rfq_id=rfq_id,
                supplier_quote_id=supplier_quote_id,
                customer_id=customer_id,
                amount=amount,
                currency=currency,
                markup_percent=float(markup_percent),
                valid_until=now + timedelta(days=settings.sales_quote_validity_days),
                estimated_delivery_date=now
                + timedelta(days=lead_time_days + settings.delivery_buffer_days),
                notes=notes,
                status=SalesQuoteStatus.pending,
            )
            db.add(quote)
            db.flush()
            record_transition(
                db,
                entity_type=EntityType.rfq,
                entity_id=rfq_id,
                transition="publish_quote",
                from_status=rfq_from,
                to_status=rfq_to,
                actor=admin,
                payload={"sales_quote_id": quote.id},
            )
            if sq_from != sq_to:
                record_transition(
                    db,
                    entity_type=EntityType.supplier_quote,
                    entity_id=supplier_quote_id,
                    transition="select",
                    from_status=sq_from,
                    to_status=sq_to,
                    actor=admin,
                )
            record_transition(
                db,
                entity_type=EntityType.sales_quote,
                entity_id=quote.id,
                transition="publish",
                from_status=None,
                to_status=SalesQuoteStatus.pending,
                actor=admin,
                payload={"amount": amount, "markup_percent": float(markup_percent)},
            )
    except IntegrityError as exc:
        raise IllegalFromState(
            "RFQ already has a sales quote",
            entity_type=EntityType.rfq.value,
            entity_id=rfq_id,
        ) from exc

    log_transition(
        entity_type=EntityType.sales_quote,
        entity_id=quote.id,
        transition="publish",
        from_status=None,
        to_status=SalesQuoteStatus.pending,
        actor=admin,
    )
    quote = reload(db, EntityType.sales_quote, quote.id)
    emit_lifecycle_notification(
        "sales_quote_published",
        entity_type=EntityType.sales_quote.value,
        entity_id=quote.id,
        recipients=[customer_id],
        payload={"quote_number": quote.quote_number, "amount": amount},
    )
    return quote


def get_sales_quote(db: Session, quote_id: str, actor: Actor) -> models.SalesQuote:
    quote = get_entity(db, EntityType.sales_quote, quote_id)
    if actor.role == ActorRole.supplier:
        raise RoleNotPermitted(
            "suppliers cannot read sales quotes",
            entity_type=EntityType.sales_quote.value,
            entity_id=quote.id,
        )
    role_gate.assert_owner(
        actor, quote.customer_id, entity_type=EntityType.sales_quote, entity_id=quote.id
    )
    return quote


def _customer_quote_response(
    db: Session,
    quote_id: str,
    customer: Actor,
    *,
    quote_transition: str,
    rfq_transition: str,
    reason: str | None,
    now: datetime | None,
) -> models.SalesQuote:
    quote = get_entity(db, EntityType.sales_quote, quote_id)
    authorize(
        EntityType.sales_quote,
        quote_transition,
        customer,
        entity_id=quote.id,
        owner_id=quote.customer_id,
        check_owner=True,
    )
    q_from = quote.status
    q_to = require_transition(
        EntityType.sales_quote, q_from, quote_transition, customer, entity_id=quote.id
    )
    now = now or utc_now()
    if quote_transition == "accept":
        valid_until = as_utc(quote.valid_until)
        if valid_until is not None and valid_until < now:
            raise _precondition(
                "sales quote has expired",
                EntityType.sales_quote,
                quote.id,
                valid_until=valid_until.isoformat(),
            )

    rfq = get_entity(db, EntityType.rfq, quote.rfq_id)
    rfq_from = rfq.status
    rfq_check = validate(EntityType.rfq, rfq_from, rfq_transition, customer.role)
    if isinstance(rfq_check, Denied):
        raise _precondition(
            f"RFQ is '{rfq_from.value}'; the quote can no longer be answered",
            EntityType.rfq,
            rfq.id,
            rfq_status=rfq_from.value,
        )
    rfq_to = rfq_check.next_state

    updates: dict[str, Any] = {"responded_at": now}
    if quote_transition == "accept":
        updates["accepted_at"] = now
    if reason is not None:
        updates["customer_response"] = reason

    rfq_id = rfq.id
    with unit_of_work(db):
        guarded_transition(
            db,
            entity_type=EntityType.sales_quote,
            entity_id=quote_id,
            transition=quote_transition,
            to_status=q_to,
            allowed_from=q_from,
            updates=updates,
        )
        guarded_transition(
            db,
            entity_type=EntityType.rfq,
            entity_id=rfq_id,
            transition=rfq_transition,
            to_status=rfq_to,
            allowed_from=rfq_from,
            stale_error=PreconditionFailed,
        )
        record_transition(
            db,
            entity_type=EntityType.sales_quote,
            entity_id=quote_id,
            transition=quote_transition,
            from_status=q_from,
            to_status=q_to,
            actor=customer,
            payload={"reason": reason} if reason else None,
        )
        record_transition(
            db,
            entity_type=EntityType.rfq,
            entity_id=rfq_id,
            transition=rfq_transition,
            from_status=rfq_from,
            to_status=rfq_to,
            actor=customer,
        )

    log_transition(
        entity_type=EntityType.sales_quote,
        entity_id=quote_id,
        transition=quote_transition,
        from_status=q_from,
        to_status=q_to,
        actor=customer,
    )
    emit_lifecycle_notification(
        f"sales_quote_{q_to.value}",
        entity_type=EntityType.sales_quote.value,
        entity_id=quote_id,
        recipients=ADMIN_RECIPIENTS,
        payload={"rfq_id": rfq_id, "reason": reason},
    )
    return reload(db, EntityType.sales_quote, quote_id)


def accept_quote(
    db: Session, sales_quote_id: str, customer: Actor, *, now: datetime | None = None
) -> models.SalesQuote:
    """Customer accepts the quote. No sales order is created here."""

    return _customer_quote_response(
        db,
        sales_quote_id,
        customer,
        quote_transition="accept",
        rfq_transition="accept_quote",
        reason=None,
        now=now,
    )


def decline_quote(
    db: Session, sales_quote_id: str, customer: Actor, *, reason: str | None = None
) -> models.SalesQuote:
    return _customer_quote_response(
        db,
        sales_quote_id,
        customer,
        quote_transition="decline",
        rfq_transition="decline_quote",
        reason=reason,
        now=None,
    )


def attach_purchase_order(
    db: Session,
    sales_quote_id: str,
    customer: Actor,
    *,
    file_url: str,
    po_number: str | None = None,
) -> models.SalesQuote:
    quote = get_entity(db, EntityType.sales_quote, sales_quote_id)
    authorize(
        EntityType.sales_quote,
        "attach_purchase_order",
        customer,
        entity_id=quote.id,
        owner_id=quote.customer_id,
        check_owner=True,
    )
    from_status = quote.status
    to_status = require_transition(
        EntityType.sales_quote, from_status, "attach_purchase_order", customer, entity_id=quote.id
    )
    if not str(file_url or "").strip():
        raise _precondition("a purchase order file is required", EntityType.sales_quote, quote.id)

    if quote.purchase_order_url == file_url and quote.purchase_order_number == po_number:
        _log_noop("purchase_order_attach_noop", EntityType.sales_quote, quote.id)
        return quote

    replaced = quote.purchase_order_url
    with unit_of_work(db):
        guarded_transition(
            db,
            entity_type=EntityType.sales_quote,
            entity_id=sales_quote_id,
            transition="attach_purchase_order",
            to_status=to_status,
            allowed_from=from_status,
            updates={"purchase_order_url": file_url, "purchase_order_number": po_number},
            stale_error=PreconditionFailed,
        )
        record_transition(
            db,
            entity_type=EntityType.sales_quote,
            entity_id=sales_quote_id,
            transition="attach_purchase_order",
            from_status=from_status,
            to_status=to_status,
            actor=customer,
            payload={"file_url": file_url, "po_number": po_number, "replaced": replaced},
        )
    log_transition(
        entity_type=EntityType.sales_quote,
        entity_id=sales_quote_id,
        transition="attach_purchase_order",
        from_status=from_status,
        to_status=to_status,
        actor=customer,
    )
    emit_lifecycle_notification(
        "purchase_order_attached",
        entity_type=EntityType.sales_quote.value,
        entity_id=sales_quote_id,
        recipients=ADMIN_RECIPIENTS,
        payload={"po_number": po_number},
    )
    return reload(db, EntityType.sales_quote, sales_quote_id)


def find_sales_order_for_quote(db: Session, sales_quote_id: str) -> models.SalesOrder | None:
    return (
        db.query(models.SalesOrder)
        .filter(models.SalesOrder.quote_id == str(sales_quote_id))
        .first()
    )


def convert_to_sales_order(
    db: Session,
    sales_quote_id: str,
    admin: Actor,
    *,
    customer_po_number: str | None = None,
    estimated_completion: datetime | None = None,
    now: datetime | None = None,
) -> models.SalesOrder:
    """Create the sales order for an accepted quote, at most once.

    The unique constraint on `sales_orders.quote_id` is the guard. Whoever
    loses the insert race gets the winner's order back, unchanged.
    """

    quote = get_entity(db, EntityType.sales_quote, sales_quote_id)
    authorize(EntityType.sales_quote, "convert_to_order", admin, entity_id=quote.id)

    existing = find_sales_order_for_quote(db, quote.id)
    if existing is not None:
        _log_noop(
            "sales_order_convert_noop",
            EntityType.sales_quote,
            quote.id,
            sales_order_id=existing.id,
        )
        return existing

    from_status = quote.status
    to_status = require_transition(
        EntityType.sales_quote, from_status, "convert_to_order", admin, entity_id=quote.id
    )
    if not quote.purchase_order_url:
        raise _precondition(
            "customer purchase order has not been attached", EntityType.sales_quote, quote.id
        )

    rfq = get_entity(db, EntityType.rfq, quote.rfq_id)
    now = now or utc_now()
    values = {
        "rfq_id": rfq.id,
        "quote_id": quote.id,
        "customer_id": quote.customer_id,
        "project_name": rfq.project_name,
        "amount": float(quote.amount),
        "currency": quote.currency,
        "customer_purchase_order_number": customer_po_number or quote.purchase_order_number,
        "estimated_completion": estimated_completion
        or now + timedelta(days=settings.default_order_lead_days),
    }

    order: models.SalesOrder | None = None
    try:
        with unit_of_work(db):
            number = document_numbering.next_yearly_number(
                db,
                doc_type="sales_order",
                prefix=document_numbering.SALES_ORDER_PREFIX,
                now=now,
            )
            # The quote may have been overridden since we read it.
            guarded_transition(
                db,
                entity_type=EntityType.sales_quote,
                entity_id=sales_quote_id,
                transition="convert_to_order",
                to_status=to_status,
                allowed_from=from_status,
                extra_filters=(models.SalesQuote.purchase_order_url.isnot(None),),
                stale_error=PreconditionFailed,
            )
            order = models.SalesOrder(
                order_number=number.formatted,
                order_status=SalesOrderStatus.pending,
                payment_status=PaymentStatus.unpaid,
                quality_check_status=QualityCheckStatus.pending,
                is_archived=False,
                **values,
            )
            db.add(order)
            db.flush()
            record_transition(
                db,
                entity_type=EntityType.sales_quote,
                entity_id=sales_quote_id,
                transition="convert_to_order",
                from_status=from_status,
                to_status=to_status,
                actor=admin,
                payload={"sales_order_id": order.id},
            )
            record_transition(
                db,
                entity_type=EntityType.sales_order,
                entity_id=order.id,
                transition="create",
                from_status=None,
                to_status=SalesOrderStatus.pending,
                actor=admin,
                payload={"order_number": order.order_number, "quote_id": sales_quote_id},
            )
    except IntegrityError:
        winner = (
            db.query(models.SalesOrder)
            .filter(models.SalesOrder.quote_id == sales_quote_id)
            .first()
        )
        if winner is None:
            logger.error(
                "sales_order_duplicate_unresolved",
                extra={"entity_type": EntityType.sales_quote.value, "entity_id": sales_quote_id},
            )
            raise DuplicateCreation(
                "sales order insert conflicted but no existing order is visible",
                entity_type=EntityType.sales_quote.value,
                entity_id=sales_quote_id,
            )
        logger.warning(
            "sales_order_duplicate_resolved",
            extra={
                "entity_type": EntityType.sales_quote.value,
                "entity_id": sales_quote_id,
                "sales_order_id": winner.id,
            },
        )
        return winner

    order_id = order.id
    log_transition(
        entity_type=EntityType.sales_order,
        entity_id=order_id,
        transition="create",
        from_status=None,
        to_status=SalesOrderStatus.pending,
        actor=admin,
    )
    order = reload(db, EntityType.sales_order, order_id)
    emit_lifecycle_notification(
        "sales_order_created",
        entity_type=EntityType.sales_order.value,
        entity_id=order.id,
        recipients=[order.customer_id],
        payload={"order_number": order.order_number},
    )
    return order


def override_sales_quote_status(
    db: Session,
    sales_quote_id: str,
    new_status: SalesQuoteStatus | str,
    admin: Actor,
    *,
    reason: str,
    request_id: str | None = None,
) -> models.SalesQuote:
    """Admin correction of a sales quote decision.

    Refused once the quote has been converted. Leaving `accepted` drops the
    attached purchase order; the RFQ status follows the quote.
    """

    if admin.role != ActorRole.admin:
        raise RoleNotPermitted(
            "only admins may override a sales quote status",
            entity_type=EntityType.sales_quote.value,
            entity_id=str(sales_quote_id),
        )
    quote = get_entity(db, EntityType.sales_quote, sales_quote_id)
    try:
        target = SalesQuoteStatus(getattr(new_status, "value", new_status))
    except ValueError as exc:
        raise UnknownTransition(
            f"'{new_status}' is not a sales quote status",
            entity_type=EntityType.sales_quote.value,
            entity_id=quote.id,
        ) from exc
    if not str(reason or "").strip():
        raise _precondition("an override reason is required", EntityType.sales_quote, quote.id)
    if find_sales_order_for_quote(db, quote.id) is not None:
        raise _precondition(
            "sales quote already converted into a sales order",
            EntityType.sales_quote,
            quote.id,
        )

    from_status = quote.status
    if target == from_status:
        _log_noop("sales_quote_override_noop", EntityType.sales_quote, quote.id)
        return quote

    now = utc_now()
    updates: dict[str, Any] = {"responded_at": now}
    if from_status == SalesQuoteStatus.accepted:
        updates.update(purchase_order_url=None, purchase_order_number=None, accepted_at=None)
    if target == SalesQuoteStatus.accepted:
        updates["accepted_at"] = now
    if target == SalesQuoteStatus.pending:
        updates["responded_at"] = None

    rfq_target = {
        SalesQuoteStatus.pending: RfqStatus.quoted,
        SalesQuoteStatus.accepted: RfqStatus.accepted,
        SalesQuoteStatus.declined: RfqStatus.declined,
    }[target]
    rfq = get_entity(db, EntityType.rfq, quote.rfq_id)
    rfq_from = rfq.status
    quote_linked_rfq_states = {RfqStatus.quoted, RfqStatus.accepted, RfqStatus.declined}
    if rfq_from not in quote_linked_rfq_states:
        raise _precondition(
            f"RFQ is '{rfq_from.value}'; quote decisions can no longer change",
            EntityType.rfq,
            rfq.id,
        )

    rfq_id = rfq.id
    with unit_of_work(db):
        guarded_transition(
            db,
            entity_type=EntityType.sales_quote,
            entity_id=sales_quote_id,
            transition="override_status",
            to_status=target,
            allowed_from=from_status,
            updates=updates,
        )
        guarded_transition(
            db,
            entity_type=EntityType.rfq,
            entity_id=rfq_id,
            transition="override_status",
            to_status=rfq_target,
            allowed_from=quote_linked_rfq_states,
            stale_error=PreconditionFailed,
        )
        record_transition(
            db,
            entity_type=EntityType.sales_quote,
            entity_id=sales_quote_id,
            transition="override_status",
            from_status=from_status,
            to_status=target,
            actor=admin,
            payload={"reason": reason},
        )
        if rfq_from != rfq_target:
            record_transition(
                db,
                entity_type=EntityType.rfq,
                entity_id=rfq_id,
                transition="override_status",
                from_status=rfq_from,
                to_status=rfq_target,
                actor=admin,
                payload={"sales_quote_id": sales_quote_id},
            )
        audit_event(
            "sales_quote.status_overridden",
            admin.id,
            {
                "sales_quote_id": sales_quote_id,
                "rfq_id": rfq_id,
                "from_status": from_status.value,
                "to_status": target.value,
                "reason": reason,
            },
            db=db,
            request_id=request_id,
        )

    logger.warning(
        "sales_quote_status_overridden",
        extra={
            "entity_type": EntityType.sales_quote.value,
            "entity_id": sales_quote_id,
            "from_status": from_status.value,
            "to_status": target.value,
            "actor_id": admin.id,
        },
    )
    return reload(db, EntityType.sales_quote, sales_quote_id)


# ---------------------------------------------------------------------------
# Sales orders
# ---------------------------------------------------------------------------


def get_sales_order(db: Session, order_id: str, actor: Actor) -> models.SalesOrder:
    order = get_entity(db, EntityType.sales_order, order_id)
    if actor.role == ActorRole.supplier:
        raise RoleNotPermitted(
            "suppliers cannot read sales orders",
            entity_type=EntityType.sales_order.value,
            entity_id=order.id,
        )
    role_gate.assert_owner(
        actor, order.customer_id, entity_type=EntityType.sales_order, entity_id=order.id
    )
    return order


def _sales_order_transition(
    db: Session,
    order_id: str,
    transition: str,
    actor: Actor,
    *,
    updates: dict[str, Any] | None = None,
    payload: dict[str, Any] | None = None,
    check_owner: bool = False,
) -> tuple[models.SalesOrder, SalesOrderStatus, SalesOrderStatus]:
    order = get_entity(db, EntityType.sales_order, order_id)
    authorize(
        EntityType.sales_order,
        transition,
        actor,
        entity_id=order.id,
        owner_id=order.customer_id,
        check_owner=check_owner,
    )
    from_status = order.order_status
    to_status = require_transition(
        EntityType.sales_order,
        from_status,
        transition,
        actor,
        entity_id=order.id,
        archived=bool(order.is_archived),
    )
    with unit_of_work(db):
        guarded_transition(
            db,
            entity_type=EntityType.sales_order,
            entity_id=order_id,
            transition=transition,
            to_status=to_status,
            allowed_from=from_status,
            updates=updates,
            extra_filters=(models.SalesOrder.is_archived.is_(False),),
        )
        record_transition(
            db,
            entity_type=EntityType.sales_order,
            entity_id=order_id,
            transition=transition,
            from_status=from_status,
            to_status=to_status,
            actor=actor,
            payload=payload,
        )
    log_transition(
        entity_type=EntityType.sales_order,
        entity_id=order_id,
        transition=transition,
        from_status=from_status,
        to_status=to_status,
        actor=actor,
    )
    return reload(db, EntityType.sales_order, order_id), from_status, to_status


def _reject_unreachable_stage(db: Session, order_id: str, target: Any, actor: Actor) -> None:
    """Raise for a target stage that no pipeline transition enters.

    A real stage (only `pending`, the initial one) is a backward move and
    fails with IllegalFromState; anything else is not a stage at all.
    """
    raw = getattr(target, "value", target)
    try:
        stage = SalesOrderStatus(raw)
    except ValueError:
        raise UnknownTransition(
            f"'{raw}' is not an order stage",
            entity_type=EntityType.sales_order.value,
            entity_id=str(order_id),
        ) from None

    order = get_entity(db, EntityType.sales_order, order_id)
    # All pipeline steps share one role gate; check it before the state.
    entering_first_stage = transition_for_order_status(SalesOrderStatus.material_procurement)
    authorize(EntityType.sales_order, entering_first_stage, actor, entity_id=order.id)
    raise IllegalFromState(
        f"cannot move sales order from '{order.order_status.value}' back to '{stage.value}'",
        entity_type=EntityType.sales_order.value,
        entity_id=order.id,
        details={"from_state": order.order_status.value, "to_state": stage.value},
    )


def advance_order_status(
    db: Session,
    order_id: str,
    next_status: SalesOrderStatus | str,
    admin: Actor,
    *,
    tracking_number: str | None = None,
    shipping_carrier: str | None = None,
) -> models.SalesOrder:
    """Move a sales order exactly one stage forward in the production pipeline."""

    transition = transition_for_order_status(next_status)
    if transition is None:
        _reject_unreachable_stage(db, order_id, next_status, admin)

    updates: dict[str, Any] = {}
    if transition == "ship":
        if tracking_number is not None:
            updates["tracking_number"] = tracking_number
        if shipping_carrier is not None:
            updates["shipping_carrier"] = shipping_carrier

    order, from_status, to_status = _sales_order_transition(
        db,
        order_id,
        transition,
        admin,
        updates=updates or None,
        payload={k: v for k, v in updates.items()} or None,
    )
    emit_lifecycle_notification(
        "sales_order_status_changed",
        entity_type=EntityType.sales_order.value,
        entity_id=order.id,
        recipients=[order.customer_id],
        payload={"from_status": from_status.value, "to_status": to_status.value},
    )
    return order


def update_tracking(
    db: Session,
    order_id: str,
    admin: Actor,
    *,
    tracking_number: str,
    shipping_carrier: str | None = None,
) -> models.SalesOrder:
    updates: dict[str, Any] = {"tracking_number": tracking_number}
    if shipping_carrier is not None:
        updates["shipping_carrier"] = shipping_carrier
    order, _, _ = _sales_order_transition(
        db, order_id, "update_tracking", admin, updates=updates, payload=dict(updates)
    )
    emit_lifecycle_notification(
        "sales_order_tracking_updated",
        entity_type=EntityType.sales_order.value,
        entity_id=order.id,
        recipients=[order.customer_id],
        payload=dict(updates),
    )
    return order


def approve_quality_check(
    db: Session,
    order_id: str,
    customer: Actor,
    *,
    approved: bool,
    notes: str | None = None,
) -> models.SalesOrder:
    now = utc_now()
    updates: dict[str, Any] = {
        "quality_check_status": QualityCheckStatus.approved
        if approved
        else QualityCheckStatus.needs_revision,
        "quality_check_notes": notes,
        "customer_approved_at": now if approved else None,
    }
    order, _, _ = _sales_order_transition(
        db,
        order_id,
        "approve_quality_check",
        customer,
        updates=updates,
        payload={"approved": bool(approved), "notes": notes},
        check_owner=True,
    )
    emit_lifecycle_notification(
        "quality_check_approved" if approved else "quality_check_needs_revision",
        entity_type=EntityType.sales_order.value,
        entity_id=order.id,
        recipients=ADMIN_RECIPIENTS,
        payload={"notes": notes},
    )
    return order


def mark_paid(
    db: Session,
    order_id: str,
    admin: Actor,
    *,
    auto_archive: bool | None = None,
    now: datetime | None = None,
) -> models.SalesOrder:
    """Record payment. Payment is independent of the production pipeline.

    A delivered order is archived in the same transaction when
    AUTO_ARCHIVE_ON_PAYMENT is on. Paying twice is a no-op.
    """

    order = get_entity(db, EntityType.sales_order, order_id)
    authorize(EntityType.sales_order, "mark_paid", admin, entity_id=order.id)
    require_transition(
        EntityType.sales_order,
        order.order_status,
        "mark_paid",
        admin,
        entity_id=order.id,
        archived=bool(order.is_archived),
    )
    if order.payment_status == PaymentStatus.paid:
        _log_noop("sales_order_mark_paid_noop", EntityType.sales_order, order.id)
        return order

    if auto_archive is None:
        auto_archive = settings.auto_archive_on_payment
    now = now or utc_now()
    order_status = order.order_status
    archive_now = (
        bool(auto_archive) and order_status == SalesOrderStatus.delivered and not order.is_archived
    )

    with unit_of_work(db):
        rowcount = (
            db.query(models.SalesOrder)
            .filter(models.SalesOrder.id == order_id)
            .filter(models.SalesOrder.payment_status == PaymentStatus.unpaid)
            .update(
                {"payment_status": PaymentStatus.paid, "paid_at": now},
                synchronize_session=False,
            )
        )
        if rowcount:
            record_transition(
                db,
                entity_type=EntityType.sales_order,
                entity_id=order_id,
                transition="mark_paid",
                from_status=order_status,
                to_status=order_status,
                actor=admin,
                payload={"payment_status": PaymentStatus.paid.value},
            )
        if rowcount and archive_now:
            archived = (
                db.query(models.SalesOrder)
                .filter(models.SalesOrder.id == order_id)
                .filter(models.SalesOrder.order_status == SalesOrderStatus.delivered)
                .filter(models.SalesOrder.is_archived.is_(False))
                .update({"is_archived": True, "archived_at": now}, synchronize_session=False)
            )
            if archived:
                record_transition(
                    db,
                    entity_type=EntityType.sales_order,
                    entity_id=order_id,
                    transition="archive",
                    from_status=order_status,
                    to_status=order_status,
                    actor=admin,
                    payload={"trigger": "payment"},
                )

    if not rowcount:
        _log_noop("sales_order_mark_paid_noop", EntityType.sales_order, order_id)
        return reload(db, EntityType.sales_order, order_id)

    log_transition(
        entity_type=EntityType.sales_order,
        entity_id=order_id,
        transition="mark_paid",
        from_status=order_status,
        to_status=order_status,
        actor=admin,
    )
    order = reload(db, EntityType.sales_order, order_id)
    emit_lifecycle_notification(
        "sales_order_paid",
        entity_type=EntityType.sales_order.value,
        entity_id=order.id,
        recipients=[order.customer_id],
        payload={"archived": bool(order.is_archived)},
    )
    return order


def upload_order_invoice(
    db: Session,
    order_id: str,
    admin: Actor,
    invoice_url: str,
    *,
    now: datetime | None = None,
) -> models.SalesOrder:
    """Attach the customer-facing invoice to a sales order.

    Allowed at any stage, like payment. The file must be a PDF: the URL has to
    end in `.pdf` and, when it points into our own store, the bytes must start
    with the PDF signature. Replacing an earlier invoice is recorded.
    """

    order = get_entity(db, EntityType.sales_order, order_id)
    authorize(EntityType.sales_order, "upload_invoice", admin, entity_id=order.id)
    require_transition(
        EntityType.sales_order,
        order.order_status,
        "upload_invoice",
        admin,
        entity_id=order.id,
        archived=bool(order.is_archived),
    )
    invoice_url = str(invoice_url or "").strip()
    if not invoice_url:
        raise _precondition("an invoice file is required", EntityType.sales_order, order.id)
    if not urlparse(invoice_url).path.lower().endswith(".pdf"):
        raise _precondition("only PDF invoices are accepted", EntityType.sales_order, order.id)
    try:
        signed = file_store.has_pdf_signature(invoice_url)
    except file_store.FileNotFoundInStore:
        raise _precondition("invoice file not found", EntityType.sales_order, order.id) from None
    if signed is False:
        raise _precondition("invoice file is not a valid PDF", EntityType.sales_order, order.id)

    if order.invoice_url == invoice_url:
        _log_noop("sales_order_invoice_noop", EntityType.sales_order, order.id)
        return order

    replaced = order.invoice_url
    order, _, _ = _sales_order_transition(
        db,
        order_id,
        "upload_invoice",
        admin,
        updates={"invoice_url": invoice_url, "invoice_uploaded_at": now or utc_now()},
        payload={"invoice_url": invoice_url, "replaced": replaced},
    )
    emit_lifecycle_notification(
        "sales_order_invoice_uploaded",
        entity_type=EntityType.sales_order.value,
        entity_id=order.id,
        recipients=[order.customer_id],
        payload={"invoice_url": invoice_url},
    )
    return order


# ---------------------------------------------------------------------------
# Purchase orders (admin -> supplier)
# ---------------------------------------------------------------------------


def get_purchase_order(db: Session, po_id: str, actor: Actor) -> models.PurchaseOrder:
    po = get_entity(db, EntityType.purchase_order, po_id)
    if actor.role == ActorRole.customer:
        raise RoleNotPermitted(
            "customers cannot read purchase orders",
            entity_type=EntityType.purchase_order.value,
            entity_id=po.id,
        )
    role_gate.assert_owner(
        actor, po.supplier_id, entity_type=EntityType.purchase_order, entity_id=po.id
    )
    return po


def create_purchase_order(
    db: Session,
    sales_quote_id: str,
    admin: Actor,
    *,
    total_amount: float | None = None,
    delivery_date: datetime | None = None,
    notes: str | None = None,
    po_file_url: str | None = None,
    now: datetime | None = None,
) -> models.PurchaseOrder:
    """Issue the purchase order to the supplier whose bid backs the sales quote."""

    if admin.role != ActorRole.admin:
        raise RoleNotPermitted(
            "only admins issue purchase orders",
            entity_type=EntityType.purchase_order.value,
            details={"role": admin.role.value},
        )
    quote = get_entity(db, EntityType.sales_quote, sales_quote_id)
    if quote.status != SalesQuoteStatus.accepted:
        raise _precondition(
            "sales quote must be accepted before ordering from the supplier",
            EntityType.sales_quote,
            quote.id,
            status=quote.status.value,
        )
    if not quote.supplier_quote_id:
        raise _precondition("sales quote has no supplier quote", EntityType.sales_quote, quote.id)
    sq = get_entity(db, EntityType.supplier_quote, quote.supplier_quote_id)
    if sq.status != SupplierQuoteStatus.accepted:
        raise _precondition(
            "supplier quote is not accepted",
            EntityType.supplier_quote,
            sq.id,
            status=sq.status.value,
        )

    existing = (
        db.query(models.PurchaseOrder)
        .filter(models.PurchaseOrder.source_sales_quote_id == quote.id)
        .filter(models.PurchaseOrder.status != PurchaseOrderStatus.cancelled)
        .order_by(models.PurchaseOrder.created_at.desc())
        .first()
    )
    if existing is not None:
        _log_noop(
            "purchase_order_create_noop",
            EntityType.sales_quote,
            quote.id,
            purchase_order_id=existing.id,
        )
        return existing

    now = now or utc_now()
    values = {
        "source_sales_quote_id": quote.id,
        "supplier_quote_id": sq.id,
        "rfq_id": quote.rfq_id,
        "supplier_id": sq.supplier_id,
        "total_amount": float(total_amount if total_amount is not None else sq.price),
        "delivery_date": delivery_date or now + timedelta(days=int(sq.lead_time_days)),
        "notes": notes,
        "po_file_url": po_file_url,
    }
    with unit_of_work(db):
        number = document_numbering.next_yearly_number(
            db,
            doc_type="purchase_order",
            prefix=document_numbering.PURCHASE_ORDER_PREFIX,
            now=now,
        )
        po = models.PurchaseOrder(
            order_number=number.formatted, status=PurchaseOrderStatus.pending, **values
        )
        db.add(po)
        db.flush()
        record_transition(
            db,
            entity_type=EntityType.purchase_order,
            entity_id=po.id,
            transition="create",
            from_status=None,
            to_status=PurchaseOrderStatus.pending,
            actor=admin,
            payload={"order_number": po.order_number, "sales_quote_id": quote.id},
        )

    po_id = po.id
    log_transition(
        entity_type=EntityType.purchase_order,
        entity_id=po_id,
        transition="create",
        from_status=None,
        to_status=PurchaseOrderStatus.pending,
        actor=admin,
    )
    po = reload(db, EntityType.purchase_order, po_id)
    emit_lifecycle_notification(
        "purchase_order_issued",
        entity_type=EntityType.purchase_order.value,
        entity_id=po.id,
        recipients=[po.supplier_id],
        payload={"order_number": po.order_number},
    )
    return po


def _purchase_order_transition(
    db: Session,
    po_id: str,
    transition: str,
    actor: Actor,
    *,
    updates: dict[str, Any] | None = None,
    payload: dict[str, Any] | None = None,
) -> models.PurchaseOrder:
    po = get_entity(db, EntityType.purchase_order, po_id)
    authorize(
        EntityType.purchase_order,
        transition,
        actor,
        entity_id=po.id,
        owner_id=po.supplier_id,
        check_owner=True,
    )
    from_status = po.status
    to_status = require_transition(
        EntityType.purchase_order,
        from_status,
        transition,
        actor,
        entity_id=po.id,
        archived=po.is_archived,
    )
    with unit_of_work(db):
        guarded_transition(
            db,
            entity_type=EntityType.purchase_order,
            entity_id=po_id,
            transition=transition,
            to_status=to_status,
            allowed_from=from_status,
            updates=updates,
            extra_filters=(models.PurchaseOrder.archived_at.is_(None),),
        )
        record_transition(
            db,
            entity_type=EntityType.purchase_order,
            entity_id=po_id,
            transition=transition,
            from_status=from_status,
            to_status=to_status,
            actor=actor,
            payload=payload,
        )
    log_transition(
        entity_type=EntityType.purchase_order,
        entity_id=po_id,
        transition=transition,
        from_status=from_status,
        to_status=to_status,
        actor=actor,
    )
    po = reload(db, EntityType.purchase_order, po_id)
    recipients = [po.supplier_id] if actor.role == ActorRole.admin else list(ADMIN_RECIPIENTS)
    emit_lifecycle_notification(
        f"purchase_order_{transition}",
        entity_type=EntityType.purchase_order.value,
        entity_id=po.id,
        recipients=recipients,
        payload={"from_status": from_status.value, "to_status": to_status.value},
    )
    return po


def accept_purchase_order(
    db: Session, po_id: str, supplier: Actor, *, now: datetime | None = None
) -> models.PurchaseOrder:
    return _purchase_order_transition(
        db, po_id, "accept", supplier, updates={"accepted_at": now or utc_now()}
    )


def decline_purchase_order(
    db: Session, po_id: str, supplier: Actor, *, reason: str | None = None
) -> models.PurchaseOrder:
    return _purchase_order_transition(
        db, po_id, "decline", supplier, payload={"reason": reason} if reason else None
    )


def advance_purchase_order(
    db: Session, po_id: str, transition: str, actor: Actor
) -> models.PurchaseOrder:
    """Production progress reported by the supplier (delivery may also be confirmed by admin)."""

    if transition not in PURCHASE_ORDER_PROGRESS_TRANSITIONS:
        raise UnknownTransition(
            f"'{transition}' is not a purchase order progress step",
            entity_type=EntityType.purchase_order.value,
            entity_id=str(po_id),
            details={"allowed": sorted(PURCHASE_ORDER_PROGRESS_TRANSITIONS)},
        )
    return _purchase_order_transition(db, po_id, transition, actor)


def cancel_purchase_order(
    db: Session, po_id: str, admin: Actor, *, reason: str | None = None
) -> models.PurchaseOrder:
    return _purchase_order_transition(
        db, po_id, "cancel", admin, payload={"reason": reason} if reason else None
    )


def upload_supplier_invoice(
    db: Session,
    po_id: str,
    supplier: Actor,
    *,
    invoice_url: str,
    now: datetime | None = None,
) -> models.PurchaseOrder:
    if not str(invoice_url or "").strip():
        raise _precondition("an invoice file is required", EntityType.purchase_order, str(po_id))
    return _purchase_order_transition(
        db,
        po_id,
        "upload_invoice",
        supplier,
        updates={"supplier_invoice_url": invoice_url, "invoice_uploaded_at": now or utc_now()},
        payload={"invoice_url": invoice_url},
    )


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


# (model, owner column, document column) per role: where a non-admin's
# readable documents are referenced from.
_OWNED_DOCUMENTS: dict[ActorRole, tuple[tuple[Any, Any, Any], ...]] = {
    ActorRole.customer: (
        (models.SalesQuote, models.SalesQuote.customer_id, models.SalesQuote.purchase_order_url),
        (models.SalesOrder, models.SalesOrder.customer_id, models.SalesOrder.invoice_url),
    ),
    ActorRole.supplier: (
        (models.PurchaseOrder, models.PurchaseOrder.supplier_id, models.PurchaseOrder.po_file_url),
        (
            models.PurchaseOrder,
            models.PurchaseOrder.supplier_id,
            models.PurchaseOrder.supplier_invoice_url,
        ),
    ),
}


def assert_file_readable(db: Session, actor: Actor, url: str) -> None:
    """Admins read every stored document; everyone else only the ones attached
    to a quote, order or purchase order they own."""

    if actor.role == ActorRole.admin:
        return
    for model, owner_col, url_col in _OWNED_DOCUMENTS.get(actor.role, ()):
        hit = (
            db.query(model.id)
            .filter(owner_col == actor.id)
            .filter(url_col == url)
            .first()
        )
        if hit is not None:
            return
    logger.warning(
        "file_download_denied",
        extra={"actor_id": actor.id, "actor_role": actor.role.value},
    )
    raise NotOwner("this document is not attached to anything you own")
