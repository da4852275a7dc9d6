import pytest

from marketplace.models import (
    ActorRole,
    EntityType,
    PurchaseOrderStatus,
    RfqStatus,
    SalesOrderStatus,
    SalesQuoteStatus,
    SupplierQuoteStatus,
)
from marketplace.services import role_gate
from marketplace.services.lifecycle_errors import (
    IllegalFromState,
    PreconditionFailed,
    RoleNotPermitted,
    UnknownTransition,
)
from marketplace.services.transition_validator import (
    STATE_ENUMS,
    TRANSITION_TABLES,
    Allowed,
    Denied,
    transition_for_order_status,
    validate,
    vocabulary,
)


def _permitted_role(entity_type, transition):
    return sorted(role_gate.allowed_roles(entity_type, transition), key=lambda r: r.value)[0]


@pytest.mark.parametrize("entity_type", list(EntityType))
def test_every_pair_outside_the_table_is_denied(entity_type):
    table = TRANSITION_TABLES[entity_type]
    for state in STATE_ENUMS[entity_type]:
        for transition in vocabulary(entity_type):
            role = _permitted_role(entity_type, transition)
            result = validate(entity_type, state, transition, role)
            if (state, transition) in table:
                assert result == Allowed(table[(state, transition)])
            else:
                assert isinstance(result, Denied), (state, transition)
                assert result.reason in {"IllegalFromState", "PreconditionFailed"}


@pytest.mark.parametrize("entity_type", list(EntityType))
def test_every_transition_has_at_least_one_role(entity_type):
    for transition in vocabulary(entity_type):
        assert role_gate.allowed_roles(entity_type, transition), transition


def test_unknown_transition_is_reported_before_role():
    result = validate(EntityType.rfq, RfqStatus.submitted, "teleport", ActorRole.customer)
    assert isinstance(result, Denied)
    assert result.reason == "UnknownTransition"
    assert isinstance(result.to_error(entity_type=EntityType.rfq), UnknownTransition)


def test_role_is_checked_before_state():
    # Cancelled RFQs accept nothing, but the customer is told about the role first.
    result = validate(EntityType.rfq, RfqStatus.cancelled, "review", ActorRole.customer)
    assert result.reason == "RoleNotPermitted"
    assert result.details["allowed_roles"] == ["admin"]


def test_sales_order_pipeline_only_moves_one_stage_forward():
    stages = list(SalesOrderStatus)
    for i, current in enumerate(stages):
        for j, target in enumerate(stages):
            transition = transition_for_order_status(target)
            if transition is None:
                continue
            result = validate(EntityType.sales_order, current, transition, ActorRole.admin)
            if j == i + 1:
                assert result == Allowed(target)
            else:
                assert not result.ok
                assert result.reason == "IllegalFromState"


def test_transition_for_order_status():
    assert transition_for_order_status(SalesOrderStatus.pending) is None
    assert transition_for_order_status("shipped") == "ship"
    assert transition_for_order_status(SalesOrderStatus.material_procurement) == "start_procurement"
    assert transition_for_order_status("bogus") is None


def test_mark_paid_is_allowed_from_every_stage_without_moving_it():
    for stage in SalesOrderStatus:
        assert validate(EntityType.sales_order, stage, "mark_paid", ActorRole.admin) == Allowed(stage)


def test_invoice_upload_is_allowed_from_every_stage_but_not_once_archived():
    for stage in SalesOrderStatus:
        assert validate(
            EntityType.sales_order, stage, "upload_invoice", ActorRole.admin
        ) == Allowed(stage)

    archived = validate(
        EntityType.sales_order,
        SalesOrderStatus.delivered,
        "upload_invoice",
        ActorRole.admin,
        archived=True,
    )
    assert archived.reason == "PreconditionFailed"


def test_archived_entities_refuse_everything_but_archive_reopen_reorder_and_payment():
    delivered = SalesOrderStatus.delivered

    tracking = validate(
        EntityType.sales_order, delivered, "update_tracking", ActorRole.admin, archived=True
    )
    assert tracking.reason == "PreconditionFailed"
    assert tracking.details["archived"] is True

    assert validate(
        EntityType.sales_order, delivered, "reorder", ActorRole.customer, archived=True
    ) == Allowed(delivered)
    assert validate(
        EntityType.sales_order, delivered, "reopen", ActorRole.admin, archived=True
    ) == Allowed(delivered)
    assert validate(
        EntityType.sales_order, delivered, "mark_paid", ActorRole.admin, archived=True
    ) == Allowed(delivered)


def test_gated_transitions_report_precondition_failures():
    archive = validate(EntityType.sales_order, SalesOrderStatus.packing, "archive", ActorRole.admin)
    assert archive.reason == "PreconditionFailed"

    convert = validate(
        EntityType.sales_quote, SalesQuoteStatus.pending, "convert_to_order", ActorRole.admin
    )
    assert isinstance(convert.to_error(entity_type=EntityType.sales_quote), PreconditionFailed)

    reorder = validate(
        EntityType.sales_order, SalesOrderStatus.shipped, "reorder", ActorRole.customer
    )
    assert reorder.reason == "PreconditionFailed"


def test_terminal_states_reject_further_moves():
    accept = validate(
        EntityType.sales_quote, SalesQuoteStatus.declined, "accept", ActorRole.customer
    )
    error = accept.to_error(entity_type=EntityType.sales_quote, entity_id="sq-1")
    assert isinstance(error, IllegalFromState)
    assert error.entity_id == "sq-1"
    assert error.details["from_state"] == "declined"

    assert not validate(
        EntityType.purchase_order, PurchaseOrderStatus.cancelled, "accept", ActorRole.supplier
    ).ok
    assert not validate(
        EntityType.supplier_quote, SupplierQuoteStatus.rejected, "select", ActorRole.admin
    ).ok


def test_states_may_be_passed_as_plain_strings():
    assert validate("rfq", "submitted", "review", "admin") == Allowed(RfqStatus.reviewing)


def test_denials_map_to_typed_errors():
    denied = validate(EntityType.rfq, RfqStatus.submitted, "review", ActorRole.supplier)
    error = denied.to_error(entity_type=EntityType.rfq, entity_id="rfq-1")
    assert isinstance(error, RoleNotPermitted)
    assert error.status_code == 403
    assert error.entity_type == "rfq"
