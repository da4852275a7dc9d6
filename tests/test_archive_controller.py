import pytest

from conftest import ADMIN, CUSTOMER, SUPPLIER
from marketplace import models
from marketplace.models import EntityType, PurchaseOrderStatus, SalesOrderStatus
from marketplace.services import archive as archive_controller
from marketplace.services import lifecycle
from marketplace.services.lifecycle_errors import (
    AlreadyArchived,
    NotArchived,
    PreconditionFailed,
    RoleNotPermitted,
    UnknownTransition,
)


def _ids(rows):
    return [r.id for r in rows]


def test_only_delivered_orders_can_be_archived(flow, db_session):
    order = flow.sales_order()
    order = flow.advance_to(order, SalesOrderStatus.shipped)
    with pytest.raises(PreconditionFailed):
        archive_controller.archive(db_session, EntityType.sales_order, order.id, ADMIN)
    assert db_session.get(models.SalesOrder, order.id).is_archived is False


def test_archive_moves_the_order_between_lists(flow, db_session):
    order = flow.delivered_order()
    assert _ids(archive_controller.list_sales_orders(db_session)) == [order.id]

    archived = archive_controller.archive(db_session, "sales_order", order.id, ADMIN)

    assert archived.is_archived is True
    assert archived.archived_at is not None
    assert archived.order_status == SalesOrderStatus.delivered
    assert archive_controller.list_sales_orders(db_session) == []
    assert _ids(archive_controller.list_sales_orders(db_session, archived=True)) == [order.id]


def test_archiving_twice_is_a_noop(flow, db_session):
    order = flow.delivered_order()
    first = archive_controller.archive(db_session, EntityType.sales_order, order.id, ADMIN)
    archived_at = first.archived_at

    second = archive_controller.archive(db_session, EntityType.sales_order, order.id, ADMIN)
    assert second.is_archived is True
    assert second.archived_at == archived_at

    archive_events = (
        db_session.query(models.LifecycleEvent)
        .filter(models.LifecycleEvent.entity_id == order.id)
        .filter(models.LifecycleEvent.transition == "archive")
        .count()
    )
    assert archive_events == 1


def test_archived_orders_refuse_changes_until_reopened(flow, db_session):
    order = flow.delivered_order()
    archive_controller.archive(db_session, EntityType.sales_order, order.id, ADMIN)

    with pytest.raises(PreconditionFailed):
        lifecycle.update_tracking(db_session, order.id, ADMIN, tracking_number="1Z-late")

    reopened = archive_controller.reopen(db_session, EntityType.sales_order, order.id, ADMIN)
    assert reopened.is_archived is False
    assert reopened.archived_at is None
    assert reopened.order_status == SalesOrderStatus.delivered
    assert _ids(archive_controller.list_sales_orders(db_session)) == [order.id]

    updated = lifecycle.update_tracking(db_session, order.id, ADMIN, tracking_number="1Z-late")
    assert updated.tracking_number == "1Z-late"


def test_reopen_requires_an_archived_order(flow, db_session):
    order = flow.delivered_order()
    with pytest.raises(NotArchived):
        archive_controller.reopen(db_session, EntityType.sales_order, order.id, ADMIN)


def test_archive_is_admin_only(flow, db_session):
    order = flow.delivered_order()
    with pytest.raises(RoleNotPermitted):
        archive_controller.archive(db_session, EntityType.sales_order, order.id, CUSTOMER)


def test_only_orders_are_archivable(flow, db_session):
    quote = flow.sales_quote()
    with pytest.raises(UnknownTransition):
        archive_controller.archive(db_session, EntityType.sales_quote, quote.id, ADMIN)
    with pytest.raises(UnknownTransition):
        archive_controller.archive(db_session, "invoice", quote.id, ADMIN)


def test_assert_not_archived(flow, db_session):
    order = flow.delivered_order()
    archive_controller.assert_not_archived(EntityType.sales_order, order)

    order = archive_controller.archive(db_session, EntityType.sales_order, order.id, ADMIN)
    with pytest.raises(AlreadyArchived):
        archive_controller.assert_not_archived(EntityType.sales_order, order)


def test_purchase_orders_archive_and_reopen(flow, db_session):
    po = flow.purchase_order()
    lifecycle.accept_purchase_order(db_session, po.id, SUPPLIER)
    for step in ("start_production", "ship", "deliver"):
        po = lifecycle.advance_purchase_order(db_session, po.id, step, SUPPLIER)
    assert po.status == PurchaseOrderStatus.delivered

    po = archive_controller.archive(db_session, EntityType.purchase_order, po.id, ADMIN)
    assert po.is_archived is True
    assert archive_controller.list_purchase_orders(db_session) == []
    assert _ids(archive_controller.list_purchase_orders(db_session, archived=True)) == [po.id]

    # Invoices are refused while archived.
    with pytest.raises(PreconditionFailed):
        lifecycle.upload_supplier_invoice(
            db_session, po.id, SUPPLIER, invoice_url="file:///invoice.pdf"
        )

    po = archive_controller.reopen(db_session, EntityType.purchase_order, po.id, ADMIN)
    assert po.is_archived is False
    assert _ids(archive_controller.list_purchase_orders(db_session, supplier_id=SUPPLIER.id)) == [
        po.id
    ]
