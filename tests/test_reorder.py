import pytest

from conftest import ADMIN, CUSTOMER, OTHER_CUSTOMER, RFQ_PAYLOAD
from marketplace import models
from marketplace.models import RFQ_SPECIFICATION_FIELDS, EntityType, RfqStatus, SalesOrderStatus
from marketplace.services import archive as archive_controller
from marketplace.services import lifecycle
from marketplace.services.lifecycle_errors import NotOwner, PreconditionFailed, RoleNotPermitted
from marketplace.services.reorder import REORDER_PREFIX, reorder


def test_reorder_copies_the_specification(flow, db_session, captured_notifications):
    order = flow.delivered_order()
    source = db_session.get(models.Rfq, order.rfq_id)

    rfq = reorder(db_session, order.id, CUSTOMER)

    assert rfq.id != source.id
    assert rfq.status == RfqStatus.submitted
    assert rfq.owner_customer_id == CUSTOMER.id
    assert rfq.origin_order_id == order.id
    assert rfq.project_name == f"{REORDER_PREFIX}{RFQ_PAYLOAD['project_name']}"
    assert rfq.specification() == source.specification()
    for name in RFQ_SPECIFICATION_FIELDS:
        assert getattr(rfq, name) == RFQ_PAYLOAD[name]
    assert rfq.special_instructions == RFQ_PAYLOAD["special_instructions"]
    assert rfq.notes == (
        f"Reorder of Order #{order.order_number}. Original Order ID: {order.id}. "
        f"Original notes: {RFQ_PAYLOAD['notes']}"
    )

    submitted = [n for n in captured_notifications if n.entity_id == rfq.id]
    assert submitted[0].event == "rfq_submitted"
    assert submitted[0].payload == {"origin_order_id": order.id}


def test_reorder_leaves_the_source_order_alone(flow, db_session):
    order = flow.delivered_order()
    reorder(db_session, order.id, CUSTOMER)

    db_session.expire_all()
    source = db_session.get(models.SalesOrder, order.id)
    assert source.order_status == SalesOrderStatus.delivered
    assert source.is_archived is False

    event = (
        db_session.query(models.LifecycleEvent)
        .filter(models.LifecycleEvent.entity_id == order.id)
        .filter(models.LifecycleEvent.transition == "reorder")
        .one()
    )
    assert event.from_status == event.to_status == "delivered"


def test_reorder_without_notes(flow, db_session):
    order = flow.delivered_order()
    source = db_session.get(models.Rfq, order.rfq_id)
    source.notes = None
    db_session.commit()

    rfq = reorder(db_session, order.id, CUSTOMER)
    assert rfq.notes.endswith("Original notes: None")


def test_archived_orders_can_be_reordered(flow, db_session):
    order = flow.delivered_order()
    archive_controller.archive(db_session, EntityType.sales_order, order.id, ADMIN)

    rfq = reorder(db_session, order.id, CUSTOMER)
    assert rfq.origin_order_id == order.id
    assert db_session.get(models.SalesOrder, order.id).is_archived is True


def test_undelivered_orders_cannot_be_reordered(flow, db_session):
    order = flow.sales_order()
    order = flow.advance_to(order, SalesOrderStatus.shipped)
    with pytest.raises(PreconditionFailed):
        reorder(db_session, order.id, CUSTOMER)
    assert db_session.query(models.Rfq).filter(models.Rfq.origin_order_id.isnot(None)).count() == 0


def test_reorder_is_for_the_owning_customer(flow, db_session):
    order = flow.delivered_order()
    with pytest.raises(NotOwner):
        reorder(db_session, order.id, OTHER_CUSTOMER)
    with pytest.raises(RoleNotPermitted):
        reorder(db_session, order.id, ADMIN)


def test_reordered_rfq_runs_the_quoting_cycle_again(flow, db_session):
    order = flow.delivered_order()
    rfq = reorder(db_session, order.id, CUSTOMER)

    rfq = lifecycle.review_rfq(db_session, rfq.id, ADMIN)
    assert rfq.status == RfqStatus.reviewing
