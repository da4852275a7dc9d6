from datetime import datetime, timezone

from marketplace import models
from marketplace.models import EntityType, RfqStatus, SalesOrderStatus
from marketplace.services.entity_transitions import as_utc, atomic_transition


def test_transition_applies_only_from_allowed_states(flow, db_session):
    rfq = flow.rfq()

    stale = atomic_transition(
        db=db_session,
        entity_type=EntityType.rfq,
        entity_id=rfq.id,
        to_status=RfqStatus.quoted,
        allowed_from=[RfqStatus.sent_to_suppliers],
    )
    assert stale.updated is False
    assert stale.rowcount == 0

    applied = atomic_transition(
        db=db_session,
        entity_type=EntityType.rfq,
        entity_id=rfq.id,
        to_status=RfqStatus.reviewing,
        allowed_from=[RfqStatus.submitted],
    )
    db_session.commit()
    assert applied.updated is True
    assert db_session.get(models.Rfq, rfq.id).status == RfqStatus.reviewing


def test_extra_filters_guard_the_update(flow, db_session):
    order = flow.delivered_order()
    order.is_archived = True
    db_session.commit()

    result = atomic_transition(
        db=db_session,
        entity_type=EntityType.sales_order,
        entity_id=order.id,
        to_status=SalesOrderStatus.delivered,
        allowed_from=[SalesOrderStatus.delivered],
        updates={"tracking_number": "late"},
        extra_filters=(models.SalesOrder.is_archived.is_(False),),
    )
    db_session.rollback()
    assert result.updated is False


def test_as_utc_treats_naive_values_as_utc():
    naive = datetime(2026, 1, 1, 12, 0)
    assert as_utc(naive) == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert as_utc(None) is None
    aware = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert as_utc(aware) is aware
