from __future__ import annotations

from sqlalchemy.orm import Session

from marketplace import models
from marketplace.core.security import Actor
from marketplace.models import RFQ_SPECIFICATION_FIELDS, EntityType, RfqStatus
from marketplace.services.lifecycle import (
    ADMIN_RECIPIENTS,
    authorize,
    get_entity,
    log_transition,
    record_transition,
    reload,
    require_transition,
    unit_of_work,
)
from marketplace.services.notifications import emit_lifecycle_notification

REORDER_PREFIX = "REORDER: "


def reorder_notes(order: models.SalesOrder, source_rfq: models.Rfq) -> str:
    return (
        f"Reorder of Order #{order.order_number}. Original Order ID: {order.id}. "
        f"Original notes: {source_rfq.notes or 'None'}"
    )


def reorder(db: Session, source_sales_order_id: str, customer: Actor) -> models.Rfq:
    """Start a new RFQ that repeats a delivered (or archived) order.

    The manufacturing specification is copied field for field; the new RFQ
    goes through quoting again from `submitted`.
    """

    order = get_entity(db, EntityType.sales_order, source_sales_order_id)
    authorize(
        EntityType.sales_order,
        "reorder",
        customer,
        entity_id=order.id,
        owner_id=order.customer_id,
        check_owner=True,
    )
    require_transition(
        EntityType.sales_order,
        order.order_status,
        "reorder",
        customer,
        entity_id=order.id,
        archived=bool(order.is_archived),
    )

    source = get_entity(db, EntityType.rfq, order.rfq_id)
    rfq = models.Rfq(
        owner_customer_id=order.customer_id,
        project_name=f"{REORDER_PREFIX}{source.project_name}",
        notes=reorder_notes(order, source),
        special_instructions=source.special_instructions,
        status=RfqStatus.submitted,
        origin_order_id=order.id,
        **{name: getattr(source, name) for name in RFQ_SPECIFICATION_FIELDS},
    )
    order_id = order.id
    order_status = order.order_status

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
            payload={"origin_order_id": order_id},
        )
        record_transition(
            db,
            entity_type=EntityType.sales_order,
            entity_id=order_id,
            transition="reorder",
            from_status=order_status,
            to_status=order_status,
            actor=customer,
            payload={"rfq_id": rfq.id},
        )

    rfq_id = rfq.id
    log_transition(
        entity_type=EntityType.rfq,
        entity_id=rfq_id,
        transition="submit",
        from_status=None,
        to_status=RfqStatus.submitted,
        actor=customer,
    )
    emit_lifecycle_notification(
        "rfq_submitted",
        entity_type=EntityType.rfq.value,
        entity_id=rfq_id,
        recipients=ADMIN_RECIPIENTS,
        payload={"origin_order_id": order_id},
    )
    return reload(db, EntityType.rfq, rfq_id)
