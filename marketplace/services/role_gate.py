"""Who may request which lifecycle transition.

Role permission is a pure lookup. Ownership (a customer owns its RFQs and
orders, a supplier owns its quotes and purchase orders) depends on the entity
row and is checked separately with `assert_owner`.
"""

from __future__ import annotations

from marketplace.core.security import Actor
from marketplace.models import ActorRole, EntityType
from marketplace.services.lifecycle_errors import NotOwner

_ADMIN = frozenset({ActorRole.admin})
_CUSTOMER = frozenset({ActorRole.customer})
_SUPPLIER = frozenset({ActorRole.supplier})

ROLE_PERMISSIONS: dict[tuple[EntityType, str], frozenset[ActorRole]] = {
    # RFQ
    (EntityType.rfq, "review"): _ADMIN,
    (EntityType.rfq, "assign_to_suppliers"): _ADMIN,
    (EntityType.rfq, "publish_quote"): _ADMIN,
    (EntityType.rfq, "accept_quote"): _CUSTOMER,
    (EntityType.rfq, "decline_quote"): _CUSTOMER,
    (EntityType.rfq, "cancel"): _ADMIN,
    # Supplier quote
    (EntityType.supplier_quote, "resubmit"): _SUPPLIER,
    (EntityType.supplier_quote, "select"): _ADMIN,
    (EntityType.supplier_quote, "reject"): _ADMIN,
    # Sales quote
    (EntityType.sales_quote, "accept"): _CUSTOMER,
    (EntityType.sales_quote, "decline"): _CUSTOMER,
    (EntityType.sales_quote, "attach_purchase_order"): _CUSTOMER,
    (EntityType.sales_quote, "convert_to_order"): _ADMIN,
    # Purchase order (admin -> supplier)
    (EntityType.purchase_order, "accept"): _SUPPLIER,
    (EntityType.purchase_order, "decline"): _SUPPLIER,
    (EntityType.purchase_order, "start_production"): _SUPPLIER,
    (EntityType.purchase_order, "ship"): _SUPPLIER,
    (EntityType.purchase_order, "deliver"): frozenset({ActorRole.supplier, ActorRole.admin}),
    (EntityType.purchase_order, "cancel"): _ADMIN,
    (EntityType.purchase_order, "upload_invoice"): _SUPPLIER,
    (EntityType.purchase_order, "archive"): _ADMIN,
    (EntityType.purchase_order, "reopen"): _ADMIN,
    # Sales order (admin -> customer)
    (EntityType.sales_order, "start_procurement"): _ADMIN,
    (EntityType.sales_order, "start_manufacturing"): _ADMIN,
    (EntityType.sales_order, "start_finishing"): _ADMIN,
    (EntityType.sales_order, "start_quality_check"): _ADMIN,
    (EntityType.sales_order, "start_packing"): _ADMIN,
    (EntityType.sales_order, "ship"): _ADMIN,
    (EntityType.sales_order, "deliver"): _ADMIN,
    (EntityType.sales_order, "mark_paid"): _ADMIN,
    (EntityType.sales_order, "upload_invoice"): _ADMIN,
    (EntityType.sales_order, "approve_quality_check"): _CUSTOMER,
    (EntityType.sales_order, "update_tracking"): _ADMIN,
    (EntityType.sales_order, "archive"): _ADMIN,
    (EntityType.sales_order, "reopen"): _ADMIN,
    (EntityType.sales_order, "reorder"): _CUSTOMER,
}


def allowed_roles(entity_type: EntityType, transition: str) -> frozenset[ActorRole]:
    return ROLE_PERMISSIONS.get((EntityType(entity_type), str(transition)), frozenset())


def is_permitted(entity_type: EntityType, transition: str, role: ActorRole) -> bool:
    return ActorRole(role) in allowed_roles(entity_type, transition)


def assert_owner(
    actor: Actor,
    owner_id: str | None,
    *,
    entity_type: EntityType,
    entity_id: str,
) -> None:
    """Raise NotOwner unless `actor` owns the entity.

    Admins act on behalf of every party and are never rejected here.
    """

    if actor.role == ActorRole.admin:
        return
    if owner_id is None or str(owner_id) != str(actor.id):
        raise NotOwner(
            f"{entity_type.value} {entity_id} does not belong to {actor.role.value} {actor.id}",
            entity_type=entity_type.value,
            entity_id=entity_id,
        )
