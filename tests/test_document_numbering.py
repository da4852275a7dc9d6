from datetime import datetime, timezone

from marketplace import models
from marketplace.services.document_numbering import format_yearly_number, next_yearly_number


def test_format_yearly_number():
    now = datetime(2026, 5, 4, tzinfo=timezone.utc)
    assert format_yearly_number(prefix="SORD", seq=1, now=now) == "SORD-26001"
    assert format_yearly_number(prefix="SQTE", seq=42, now=now) == "SQTE-26042"
    assert format_yearly_number(prefix="PO", seq=1234, now=now) == "PO-261234"


def test_sequence_increments_per_doc_type(db_session):
    now = datetime(2026, 1, 10, tzinfo=timezone.utc)
    a = next_yearly_number(db_session, doc_type="sales_order", prefix="SORD", now=now)
    b = next_yearly_number(db_session, doc_type="sales_order", prefix="SORD", now=now)
    other = next_yearly_number(db_session, doc_type="sales_quote", prefix="SQTE", now=now)
    db_session.commit()

    assert (a.formatted, b.formatted) == ("SORD-26001", "SORD-26002")
    assert other.formatted == "SQTE-26001"
    assert b.year == "2026"


def test_sequence_resets_each_year(db_session):
    last_year = datetime(2025, 12, 31, 23, 0, tzinfo=timezone.utc)
    new_year = datetime(2026, 1, 1, 0, 30, tzinfo=timezone.utc)

    next_yearly_number(db_session, doc_type="sales_order", prefix="SORD", now=last_year)
    next_yearly_number(db_session, doc_type="sales_order", prefix="SORD", now=last_year)
    first = next_yearly_number(db_session, doc_type="sales_order", prefix="SORD", now=new_year)
    db_session.commit()

    assert first.formatted == "SORD-26001"
    assert db_session.query(models.DocumentYearlySequence).count() == 2


def test_prefix_defaults_to_doc_type(db_session):
    now = datetime(2026, 2, 1, tzinfo=timezone.utc)
    number = next_yearly_number(db_session, doc_type="memo", now=now)
    assert number.formatted == "memo-26001"
