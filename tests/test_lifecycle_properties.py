"""Cross-entity properties of the quote -> order lifecycle.

The threaded tests give every worker its own session (its own connection)
and release them together through a barrier, so the at-most-once and
one-winner guarantees are exercised by the database, not by mocks.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from conftest import ADMIN, CUSTOMER, OTHER_SUPPLIER, RFQ_PAYLOAD, SUPPLIER, TestingSessionLocal
from marketplace import models
from marketplace.models import SalesOrderStatus, SalesQuoteStatus, SupplierQuoteStatus
from marketplace.services import lifecycle
from marketplace.services.entity_transitions import as_utc
from marketplace.services.lifecycle_errors import IllegalFromState, PreconditionFailed


def _run_together(count, work):
    """Run `work(session)` in `count` threads released at the same instant."""
    barrier = threading.Barrier(count)
    results, errors = [], []
    lock = threading.Lock()

    def worker():
        db = TestingSessionLocal()
        try:
            barrier.wait(timeout=10)
            outcome = work(db)
            with lock:
                results.append(outcome)
        except Exception as exc:
            with lock:
                errors.append(exc)
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=count) as pool:
        for future in [pool.submit(worker) for _ in range(count)]:
            future.result()
    return results, errors


def _order_state(quote_id):
    """(quote status, PO url, sales order id) read through a fresh session."""
    db = TestingSessionLocal()
    try:
        quote = db.get(models.SalesQuote, quote_id)
        order = db.query(models.SalesOrder).filter_by(quote_id=quote_id).one_or_none()
        return quote.status, quote.purchase_order_url, order.id if order else None
    finally:
        db.close()


def _assert_order_implies_accepted_po(quote_id):
    status, po_url, order_id = _order_state(quote_id)
    if order_id is not None:
        assert status == SalesQuoteStatus.accepted
        assert po_url
    return status, po_url, order_id


def test_concurrent_conversions_create_one_order(flow):
    quote = flow.quote_with_po()

    def convert(db):
        return lifecycle.convert_to_sales_order(db, quote.id, ADMIN).id

    results, errors = _run_together(2, convert)

    assert errors == []
    assert len(results) == 2
    assert results[0] == results[1]

    db = TestingSessionLocal()
    try:
        assert db.query(models.SalesOrder).filter_by(quote_id=quote.id).count() == 1
        creates = (
            db.query(models.LifecycleEvent)
            .filter_by(entity_id=results[0], transition="create")
            .count()
        )
        assert creates == 1
    finally:
        db.close()


def test_concurrent_advances_have_one_winner(flow):
    order = flow.sales_order()

    def advance(db):
        try:
            lifecycle.advance_order_status(
                db, order.id, SalesOrderStatus.material_procurement, ADMIN
            )
        except IllegalFromState:
            return "illegal"
        return "ok"

    results, errors = _run_together(2, advance)

    assert errors == []
    assert sorted(results) == ["illegal", "ok"]
    db = TestingSessionLocal()
    try:
        assert db.get(models.SalesOrder, order.id).order_status == (
            SalesOrderStatus.material_procurement
        )
        advances = (
            db.query(models.LifecycleEvent)
            .filter_by(entity_id=order.id, transition="start_procurement")
            .count()
        )
        assert advances == 1
    finally:
        db.close()


def test_two_bids_one_published_quote_one_order(db_session):
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    rfq = lifecycle.create_rfq(
        db_session,
        CUSTOMER,
        {**RFQ_PAYLOAD, "project_name": "Bracket", "material": "Steel", "quantity": 40},
    )
    lifecycle.assign_suppliers(db_session, rfq.id, [SUPPLIER.id, OTHER_SUPPLIER.id], ADMIN)
    cheap = lifecycle.submit_supplier_quote(
        db_session, rfq.id, SUPPLIER, {"price": 100, "lead_time_days": 10}
    )
    fast = lifecycle.submit_supplier_quote(
        db_session, rfq.id, OTHER_SUPPLIER, {"price": 120, "lead_time_days": 7}
    )

    quote = lifecycle.publish_sales_quote(db_session, rfq.id, cheap.id, 30, ADMIN, now=now)
    assert quote.amount == 130.0
    assert as_utc(quote.estimated_delivery_date) == now + timedelta(days=10 + 7)
    db_session.expire_all()
    assert db_session.get(models.SupplierQuote, cheap.id).status == SupplierQuoteStatus.accepted
    assert db_session.get(models.SupplierQuote, fast.id).status == SupplierQuoteStatus.pending

    lifecycle.accept_quote(db_session, quote.id, CUSTOMER)
    lifecycle.attach_purchase_order(
        db_session, quote.id, CUSTOMER, file_url="file:///po/bracket.pdf", po_number="CPO-9"
    )
    order = lifecycle.convert_to_sales_order(db_session, quote.id, ADMIN)
    assert order.order_status == SalesOrderStatus.pending
    assert order.amount == 130.0

    with pytest.raises(IllegalFromState):
        lifecycle.advance_order_status(db_session, order.id, "manufacturing", ADMIN)
    db_session.expire_all()
    assert db_session.get(models.SalesOrder, order.id).order_status == SalesOrderStatus.pending


def test_an_order_exists_only_for_an_accepted_quote_with_a_po(flow, db_session):
    quote = flow.sales_quote()
    assert _assert_order_implies_accepted_po(quote.id)[2] is None

    lifecycle.accept_quote(db_session, quote.id, CUSTOMER)
    assert _assert_order_implies_accepted_po(quote.id) == (SalesQuoteStatus.accepted, None, None)

    with pytest.raises(PreconditionFailed):
        lifecycle.convert_to_sales_order(db_session, quote.id, ADMIN)
    assert _assert_order_implies_accepted_po(quote.id)[2] is None

    lifecycle.attach_purchase_order(
        db_session, quote.id, CUSTOMER, file_url="file:///po/a.pdf", po_number="CPO-1"
    )
    # An admin moving the quote away from accepted drops the PO, so conversion stays blocked.
    lifecycle.override_sales_quote_status(
        db_session, quote.id, SalesQuoteStatus.pending, ADMIN, reason="customer asked"
    )
    assert _assert_order_implies_accepted_po(quote.id) == (SalesQuoteStatus.pending, None, None)
    with pytest.raises(PreconditionFailed):
        lifecycle.convert_to_sales_order(db_session, quote.id, ADMIN)

    lifecycle.accept_quote(db_session, quote.id, CUSTOMER)
    lifecycle.attach_purchase_order(
        db_session, quote.id, CUSTOMER, file_url="file:///po/b.pdf", po_number="CPO-2"
    )
    order = lifecycle.convert_to_sales_order(db_session, quote.id, ADMIN)
    assert _assert_order_implies_accepted_po(quote.id) == (
        SalesQuoteStatus.accepted,
        "file:///po/b.pdf",
        order.id,
    )

    # Once the order exists the quote decision is frozen.
    with pytest.raises(PreconditionFailed):
        lifecycle.override_sales_quote_status(
            db_session, quote.id, SalesQuoteStatus.declined, ADMIN, reason="too late"
        )
    assert _assert_order_implies_accepted_po(quote.id)[2] == order.id
