from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from marketplace import models
from marketplace.models import EntityType

# (model, status column attribute) per lifecycle entity.
STATUS_COLUMNS: dict[EntityType, tuple[type, str]] = {
    EntityType.rfq: (models.Rfq, "status"),
    EntityType.supplier_quote: (models.SupplierQuote, "status"),
    EntityType.sales_quote: (models.SalesQuote, "status"),
    EntityType.purchase_order: (models.PurchaseOrder, "status"),
    EntityType.sales_order: (models.SalesOrder, "order_status"),
}


@dataclass(frozen=True)
class TransitionResult:
    updated: bool
    rowcount: int


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def atomic_transition(
    *,
    db: Session,
    entity_type: EntityType,
    entity_id: str,
    to_status: Any,
    allowed_from: Iterable[Any],
    updates: dict[str, Any] | None = None,
    extra_filters: Iterable[Any] = (),
) -> TransitionResult:
    """Apply a status transition with an atomic DB guard.

    This prevents out-of-order transitions from being persisted even under
    concurrency, by performing a single conditional UPDATE:

        UPDATE <table>
        SET <status> = :to_status, ...
        WHERE id = :entity_id AND <status> IN (:allowed_from) [AND ...]

    Notes:
    - Callers control commit/rollback.
    - A zero rowcount means another writer moved the row first (or the row
      never matched); the caller decides which typed error that is.
    - `extra_filters` carries additional guards, e.g. "not archived".
    """

    model, status_attr = STATUS_COLUMNS[EntityType(entity_type)]
    status_col = getattr(model, status_attr)

    update_values: dict[str, Any] = {status_attr: to_status}
    if updates:
        update_values.update(updates)

    q = db.query(model).filter(model.id == str(entity_id)).filter(
        status_col.in_(list(set(allowed_from)))
    )
    for clause in extra_filters:
        q = q.filter(clause)

    rowcount = q.update(update_values, synchronize_session=False)
    return TransitionResult(updated=rowcount > 0, rowcount=int(rowcount or 0))


def coalesce_datetime(existing_column, value: datetime):
    """Helper for SQL-side datetime coalesce (set once)."""

    return func.coalesce(existing_column, value)
