"""Archive / reopen for delivered orders.

Archiving only hides a delivered order from the active lists; it never
changes `order_status` and never deletes history. The active and archived
listings partition the orders strictly on the archived flag.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from marketplace import models
from marketplace.core.security import Actor
from marketplace.models import EntityType, PurchaseOrderStatus, SalesOrderStatus
from marketplace.services.entity_transitions import utc_now
from marketplace.services.lifecycle import (
    authorize,
    get_entity,
    log_transition,
    record_transition,
    reload,
    require_transition,
    unit_of_work,
)
from marketplace.services.lifecycle_errors import (
    AlreadyArchived,
    NotArchived,
    PreconditionFailed,
    UnknownTransition,
)

logger = logging.getLogger("marketplace.archive")

ARCHIVABLE = (EntityType.sales_order, EntityType.purchase_order)


def _archivable(entity_type: EntityType | str) -> EntityType:
    try:
        et = EntityType(entity_type)
    except ValueError:
        et = None
    if et not in ARCHIVABLE:
        raise UnknownTransition(
            f"'{getattr(entity_type, 'value', entity_type)}' cannot be archived",
            entity_type=getattr(entity_type, "value", str(entity_type)),
        )
    return et


def is_archived(row) -> bool:
    if isinstance(row, models.SalesOrder):
        return bool(row.is_archived)
    return row.archived_at is not None


def _status_of(row):
    if isinstance(row, models.SalesOrder):
        return row.order_status
    return row.status


def assert_not_archived(entity_type: EntityType, row) -> None:
    """For callers that must refuse archived entities outright."""

    if is_archived(row):
        raise AlreadyArchived(
            f"{entity_type.value} {row.id} is archived",
            entity_type=entity_type.value,
            entity_id=row.id,
        )


def _set_archived(db: Session, entity_type: EntityType, entity_id: str, now: datetime) -> int:
    if entity_type == EntityType.sales_order:
        return (
            db.query(models.SalesOrder)
            .filter(models.SalesOrder.id == entity_id)
            .filter(models.SalesOrder.order_status == SalesOrderStatus.delivered)
            .filter(models.SalesOrder.is_archived.is_(False))
            .update({"is_archived": True, "archived_at": now}, synchronize_session=False)
        )
    return (
        db.query(models.PurchaseOrder)
        .filter(models.PurchaseOrder.id == entity_id)
        .filter(models.PurchaseOrder.status == PurchaseOrderStatus.delivered)
        .filter(models.PurchaseOrder.archived_at.is_(None))
        .update({"archived_at": now}, synchronize_session=False)
    )


def _clear_archived(db: Session, entity_type: EntityType, entity_id: str) -> int:
    if entity_type == EntityType.sales_order:
        return (
            db.query(models.SalesOrder)
            .filter(models.SalesOrder.id == entity_id)
            .filter(models.SalesOrder.is_archived.is_(True))
            .update({"is_archived": False, "archived_at": None}, synchronize_session=False)
        )
    return (
        db.query(models.PurchaseOrder)
        .filter(models.PurchaseOrder.id == entity_id)
        .filter(models.PurchaseOrder.archived_at.isnot(None))
        .update({"archived_at": None}, synchronize_session=False)
    )


def archive(
    db: Session,
    entity_type: EntityType | str,
    entity_id: str,
    admin: Actor,
    *,
    now: datetime | None = None,
):
    """Archive a delivered order. Archiving an archived order is a no-op."""

    et = _archivable(entity_type)
    row = get_entity(db, et, entity_id)
    authorize(et, "archive", admin, entity_id=row.id)
    status = _status_of(row)
    require_transition(et, status, "archive", admin, entity_id=row.id, archived=is_archived(row))

    if is_archived(row):
        logger.info("archive_noop", extra={"entity_type": et.value, "entity_id": row.id})
        return row

    with unit_of_work(db):
        rowcount = _set_archived(db, et, row.id, now or utc_now())
        if rowcount:
            record_transition(
                db,
                entity_type=et,
                entity_id=row.id,
                transition="archive",
                from_status=status,
                to_status=status,
                actor=admin,
            )

    fresh = reload(db, et, entity_id)
    if not rowcount:
        if is_archived(fresh):
            # Someone else archived it between our read and write.
            logger.info("archive_noop", extra={"entity_type": et.value, "entity_id": fresh.id})
            return fresh
        raise PreconditionFailed(
            f"{et.value} {entity_id} is no longer delivered",
            entity_type=et.value,
            entity_id=str(entity_id),
        )

    log_transition(
        entity_type=et,
        entity_id=entity_id,
        transition="archive",
        from_status=status,
        to_status=status,
        actor=admin,
    )
    return fresh


def reopen(db: Session, entity_type: EntityType | str, entity_id: str, admin: Actor):
    """Bring an archived order back to the active list. Status is untouched."""

    et = _archivable(entity_type)
    row = get_entity(db, et, entity_id)
    authorize(et, "reopen", admin, entity_id=row.id)
    status = _status_of(row)
    not_archived = NotArchived(
        f"{et.value} {entity_id} is not archived",
        entity_type=et.value,
        entity_id=str(entity_id),
    )
    if not is_archived(row):
        raise not_archived
    require_transition(et, status, "reopen", admin, entity_id=row.id, archived=True)

    with unit_of_work(db):
        rowcount = _clear_archived(db, et, row.id)
        if not rowcount:
            raise not_archived
        record_transition(
            db,
            entity_type=et,
            entity_id=row.id,
            transition="reopen",
            from_status=status,
            to_status=status,
            actor=admin,
        )

    log_transition(
        entity_type=et,
        entity_id=entity_id,
        transition="reopen",
        from_status=status,
        to_status=status,
        actor=admin,
    )
    return reload(db, et, entity_id)


def list_sales_orders(
    db: Session,
    *,
    archived: bool = False,
    customer_id: str | None = None,
    limit: int = 200,
) -> list[models.SalesOrder]:
    q = db.query(models.SalesOrder).filter(models.SalesOrder.is_archived.is_(bool(archived)))
    if customer_id is not None:
        q = q.filter(models.SalesOrder.customer_id == customer_id)
    return (
        q.order_by(models.SalesOrder.created_at.desc(), models.SalesOrder.id.asc())
        .limit(limit)
        .all()
    )


def list_purchase_orders(
    db: Session,
    *,
    archived: bool = False,
    supplier_id: str | None = None,
    limit: int = 200,
) -> list[models.PurchaseOrder]:
    q = db.query(models.PurchaseOrder)
    if archived:
        q = q.filter(models.PurchaseOrder.archived_at.isnot(None))
    else:
        q = q.filter(models.PurchaseOrder.archived_at.is_(None))
    if supplier_id is not None:
        q = q.filter(models.PurchaseOrder.supplier_id == supplier_id)
    return (
        q.order_by(models.PurchaseOrder.created_at.desc(), models.PurchaseOrder.id.asc())
        .limit(limit)
        .all()
    )
