import json

from marketplace import models
from marketplace.services.audit import audit_event


def test_audit_event_joins_the_callers_transaction(db_session):
    audit_id = audit_event(
        "sales_quote.status_overridden",
        "admin-1",
        {"reason": "typo"},
        db=db_session,
        request_id="req-1",
    )
    assert audit_id is not None
    db_session.rollback()
    assert db_session.query(models.AuditLog).count() == 0


def test_audit_event_is_idempotent_by_key(db_session):
    first = audit_event("export", "admin-1", {}, db=db_session, idempotency_key="k-1")
    second = audit_event("export", "admin-1", {}, db=db_session, idempotency_key="k-1")
    db_session.commit()
    assert first == second
    assert db_session.query(models.AuditLog).count() == 1


def test_audit_event_without_a_session_commits_on_its_own(db_session):
    audit_id = audit_event("sales_order.viewed", "admin-1", {"order_id": "so-1"})
    assert audit_id is not None

    row = db_session.get(models.AuditLog, audit_id)
    assert row.action == "sales_order.viewed"
    assert json.loads(row.payload_json) == {"order_id": "so-1"}
