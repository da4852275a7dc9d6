"""Yearly document numbers (SQTE-26001, SORD-26001, PO-26001).

One counter row per (doc_type, year) in `document_yearly_sequences`. The row
is incremented inside the caller's transaction, so a rolled-back quote or
order gives its number back.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace import models
from marketplace.services.entity_transitions import utc_now

SALES_QUOTE_PREFIX = "SQTE"
SALES_ORDER_PREFIX = "SORD"
PURCHASE_ORDER_PREFIX = "PO"


@dataclass(frozen=True)
class YearlyNumber:
    doc_type: str
    year: str  # YYYY
    seq: int
    formatted: str


def format_yearly_number(*, prefix: str, seq: int, now: datetime) -> str:
    # Three digits minimum; the thousandth document of a year simply widens.
    return f"{prefix}-{now:%y}{seq:03d}"


def _supports_row_locks(db: Session) -> bool:
    bind = db.get_bind()
    return bind.dialect.name != "sqlite"


def _sequence_row(db: Session, doc_type: str, year: str, *, lock: bool):
    q = db.query(models.DocumentYearlySequence).filter_by(doc_type=doc_type, year=year)
    return q.with_for_update().first() if lock else q.first()


def _create_sequence_row(db: Session, doc_type: str, year: str, *, savepoint: bool):
    """Insert the year's counter row, or return None if another writer beat us.

    Where savepoints are usable the insert is isolated so losing the race does
    not discard the caller's pending writes.
    """
    row = models.DocumentYearlySequence(doc_type=doc_type, year=year, last_seq=0)
    if not savepoint:
        db.add(row)
        db.flush()
        return row
    try:
        with db.begin_nested():
            db.add(row)
    except IntegrityError:
        return None
    return row


def next_yearly_number(
    db: Session,
    *,
    doc_type: str,
    prefix: str | None = None,
    now: datetime | None = None,
    max_retries: int = 5,
) -> YearlyNumber:
    """Allocate the next number for `doc_type` in the year of `now` (UTC).

    `prefix` defaults to `doc_type`. On Postgres the counter row is read with
    FOR UPDATE, so concurrent allocations serialise on it until commit.
    """
    now = now or utc_now()
    doc_type = str(doc_type)
    year = f"{now:%Y}"
    locking = _supports_row_locks(db)

    for _ in range(max_retries):
        row = _sequence_row(db, doc_type, year, lock=locking)
        if row is None:
            row = _create_sequence_row(db, doc_type, year, savepoint=locking)
            if row is None:
                continue

        row.last_seq = int(row.last_seq or 0) + 1
        db.flush()
        return YearlyNumber(
            doc_type=doc_type,
            year=year,
            seq=row.last_seq,
            formatted=format_yearly_number(prefix=prefix or doc_type, seq=row.last_seq, now=now),
        )

    raise RuntimeError(f"Could not allocate yearly number for doc_type={doc_type} year={year}")
