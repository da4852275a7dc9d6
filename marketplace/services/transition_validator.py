"""Pure, table-driven transition validation.

`validate` never touches the database. It answers one question: given an
entity's current state, may this role request this transition, and if so
what is the next state? Orchestrator code re-checks the answer at write time
with a conditional UPDATE.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

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
from marketplace.services.lifecycle_errors import DENIAL_ERRORS, LifecycleError

STATE_ENUMS: dict[EntityType, type[Enum]] = {
    EntityType.rfq: RfqStatus,
    EntityType.supplier_quote: SupplierQuoteStatus,
    EntityType.sales_quote: SalesQuoteStatus,
    EntityType.purchase_order: PurchaseOrderStatus,
    EntityType.sales_order: SalesOrderStatus,
}

_R = RfqStatus
_SQ = SupplierQuoteStatus
_Q = SalesQuoteStatus
_PO = PurchaseOrderStatus
_SO = SalesOrderStatus

# Each pipeline step is named after the stage it enters.
SALES_ORDER_PIPELINE_TRANSITIONS: dict[SalesOrderStatus, str] = {
    _SO.material_procurement: "start_procurement",
    _SO.manufacturing: "start_manufacturing",
    _SO.finishing: "start_finishing",
    _SO.quality_check: "start_quality_check",
    _SO.packing: "start_packing",
    _SO.shipped: "ship",
    _SO.delivered: "deliver",
}


def _sales_order_table() -> dict[tuple[Enum, str], Enum]:
    table: dict[tuple[Enum, str], Enum] = {}
    stages = list(SalesOrderStatus)
    for current, nxt in zip(stages, stages[1:]):
        table[(current, SALES_ORDER_PIPELINE_TRANSITIONS[nxt])] = nxt
    for state in stages:
        table[(state, "mark_paid")] = state
        table[(state, "upload_invoice")] = state
    table[(_SO.quality_check, "approve_quality_check")] = _SO.quality_check
    table[(_SO.shipped, "update_tracking")] = _SO.shipped
    table[(_SO.delivered, "update_tracking")] = _SO.delivered
    table[(_SO.delivered, "archive")] = _SO.delivered
    table[(_SO.delivered, "reopen")] = _SO.delivered
    table[(_SO.delivered, "reorder")] = _SO.delivered
    return table


TRANSITION_TABLES: dict[EntityType, dict[tuple[Enum, str], Enum]] = {
    EntityType.rfq: {
        (_R.submitted, "review"): _R.reviewing,
        (_R.submitted, "assign_to_suppliers"): _R.sent_to_suppliers,
        (_R.reviewing, "assign_to_suppliers"): _R.sent_to_suppliers,
        (_R.sent_to_suppliers, "assign_to_suppliers"): _R.sent_to_suppliers,
        (_R.sent_to_suppliers, "publish_quote"): _R.quoted,
        (_R.quoted, "accept_quote"): _R.accepted,
        (_R.quoted, "decline_quote"): _R.declined,
        (_R.submitted, "cancel"): _R.cancelled,
        (_R.reviewing, "cancel"): _R.cancelled,
        (_R.sent_to_suppliers, "cancel"): _R.cancelled,
        (_R.quoted, "cancel"): _R.cancelled,
    },
    EntityType.supplier_quote: {
        (_SQ.pending, "resubmit"): _SQ.pending,
        (_SQ.pending, "select"): _SQ.accepted,
        (_SQ.accepted, "select"): _SQ.accepted,
        (_SQ.pending, "reject"): _SQ.rejected,
    },
    EntityType.sales_quote: {
        (_Q.pending, "accept"): _Q.accepted,
        (_Q.pending, "decline"): _Q.declined,
        (_Q.accepted, "attach_purchase_order"): _Q.accepted,
        (_Q.accepted, "convert_to_order"): _Q.accepted,
    },
    EntityType.purchase_order: {
        (_PO.pending, "accept"): _PO.accepted,
        (_PO.pending, "decline"): _PO.cancelled,
        (_PO.accepted, "start_production"): _PO.in_progress,
        (_PO.in_progress, "ship"): _PO.shipped,
        (_PO.shipped, "deliver"): _PO.delivered,
        (_PO.pending, "cancel"): _PO.cancelled,
        (_PO.accepted, "cancel"): _PO.cancelled,
        (_PO.in_progress, "cancel"): _PO.cancelled,
        (_PO.accepted, "upload_invoice"): _PO.accepted,
        (_PO.in_progress, "upload_invoice"): _PO.in_progress,
        (_PO.shipped, "upload_invoice"): _PO.shipped,
        (_PO.delivered, "upload_invoice"): _PO.delivered,
        (_PO.delivered, "archive"): _PO.delivered,
        (_PO.delivered, "reopen"): _PO.delivered,
    },
    EntityType.sales_order: _sales_order_table(),
}

# Transitions that are structurally legal but gated on a fact about the entity
# (delivered, accepted, ...). Asking for them from the wrong state is a failed
# precondition rather than an illegal move.
PRECONDITION_TRANSITIONS: frozenset[str] = frozenset(
    {"archive", "attach_purchase_order", "convert_to_order", "reorder"}
)

# Transitions still permitted while an entity is archived.
ARCHIVE_EXEMPT_TRANSITIONS: frozenset[str] = frozenset(
    {"archive", "reopen", "reorder", "mark_paid"}
)


def vocabulary(entity_type: EntityType) -> frozenset[str]:
    table = TRANSITION_TABLES[EntityType(entity_type)]
    return frozenset(transition for _state, transition in table)


@dataclass(frozen=True)
class Allowed:
    next_state: Enum

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Denied:
    reason: str  # name of the LifecycleError subclass
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return False

    def to_error(
        self, *, entity_type: EntityType | None = None, entity_id: str | None = None
    ) -> LifecycleError:
        error_cls = DENIAL_ERRORS[self.reason]
        return error_cls(
            self.message,
            entity_type=entity_type.value if entity_type is not None else None,
            entity_id=entity_id,
            details=dict(self.details),
        )


ValidationResult = Union[Allowed, Denied]


def _coerce_state(entity_type: EntityType, state: Any) -> Enum | None:
    enum_cls = STATE_ENUMS[entity_type]
    if isinstance(state, enum_cls):
        return state
    try:
        return enum_cls(getattr(state, "value", state))
    except ValueError:
        return None


def validate(
    entity_type: EntityType,
    current_state: Any,
    requested_transition: str,
    actor_role: ActorRole,
    *,
    archived: bool = False,
) -> ValidationResult:
    """Decide whether `requested_transition` may be applied.

    Checks run in a fixed order so callers always see the most fundamental
    problem first: unknown transition, role, archived guard, then the table.
    """

    entity_type = EntityType(entity_type)
    transition = str(requested_transition)
    role = ActorRole(actor_role)

    if transition not in vocabulary(entity_type):
        return Denied(
            "UnknownTransition",
            f"'{transition}' is not a {entity_type.value} transition",
            {"transition": transition},
        )

    if not role_gate.is_permitted(entity_type, transition, role):
        return Denied(
            "RoleNotPermitted",
            f"role '{role.value}' may not {transition} a {entity_type.value}",
            {
                "transition": transition,
                "role": role.value,
                "allowed_roles": sorted(
                    r.value for r in role_gate.allowed_roles(entity_type, transition)
                ),
            },
        )

    state = _coerce_state(entity_type, current_state)

    if archived:
        if transition not in ARCHIVE_EXEMPT_TRANSITIONS:
            return Denied(
                "PreconditionFailed",
                f"{entity_type.value} is archived; reopen it before '{transition}'",
                {"transition": transition, "archived": True},
            )
        if transition == "reorder" and state is not None:
            return Allowed(state)

    if state is not None:
        next_state = TRANSITION_TABLES[entity_type].get((state, transition))
        if next_state is not None:
            return Allowed(next_state)

    from_value = getattr(state, "value", current_state)
    if transition in PRECONDITION_TRANSITIONS:
        return Denied(
            "PreconditionFailed",
            f"cannot {transition} a {entity_type.value} in state '{from_value}'",
            {"transition": transition, "from_state": from_value},
        )
    return Denied(
        "IllegalFromState",
        f"cannot {transition} a {entity_type.value} from state '{from_value}'",
        {"transition": transition, "from_state": from_value},
    )


def transition_for_order_status(target: SalesOrderStatus | str) -> str | None:
    """Pipeline transition that enters `target`, or None for the initial stage."""

    try:
        status = SalesOrderStatus(getattr(target, "value", target))
    except ValueError:
        return None
    return SALES_ORDER_PIPELINE_TRANSITIONS.get(status)
