"""Order status graph and role permissions.

Single canonical transition table for the order lifecycle. Every status has
an entry, terminal statuses map to an empty set.
"""
from django.db import models


class OrderStatus(models.TextChoices):
    DRAFT = "DRAFT", "Draft"
    PENDING = "PENDING", "Pending"
    POOLING = "POOLING", "Pooling"
    PROCESSING = "PROCESSING", "Processing"
    CONFIRMED = "CONFIRMED", "Confirmed"
    PAID = "PAID", "Paid"
    SHIPPING = "SHIPPING", "Shipping"
    DELIVERED = "DELIVERED", "Delivered"
    CANCELLED = "CANCELLED", "Cancelled"
    REFUNDED = "REFUNDED", "Refunded"


class UserRole(models.TextChoices):
    CUSTOMER = "CUSTOMER", "Customer"
    SUPPLIER = "SUPPLIER", "Supplier"
    GENERAL_CONTRACTOR = "GENERAL_CONTRACTOR", "General contractor"
    SUBCONTRACTOR = "SUBCONTRACTOR", "Subcontractor"
    ADMIN = "ADMIN", "Admin"
    SUPER_ADMIN = "SUPER_ADMIN", "Super admin"


class PoolStatus(models.TextChoices):
    OPEN = "OPEN", "Open"
    LOCKED = "LOCKED", "Locked"
    COMPLETED = "COMPLETED", "Completed"


# Successors listed in lifecycle order so available transitions come back stable.
VALID_TRANSITIONS: dict[str, tuple[str, ...]] = {
    OrderStatus.DRAFT: (OrderStatus.PENDING,),
    OrderStatus.PENDING: (OrderStatus.POOLING, OrderStatus.PROCESSING, OrderStatus.CANCELLED),
    OrderStatus.POOLING: (OrderStatus.PROCESSING, OrderStatus.CANCELLED),
    OrderStatus.PROCESSING: (OrderStatus.CONFIRMED, OrderStatus.CANCELLED),
    OrderStatus.CONFIRMED: (OrderStatus.PAID, OrderStatus.CANCELLED),
    OrderStatus.PAID: (OrderStatus.SHIPPING, OrderStatus.REFUNDED),
    OrderStatus.SHIPPING: (OrderStatus.DELIVERED,),
    OrderStatus.DELIVERED: (),
    OrderStatus.CANCELLED: (),
    OrderStatus.REFUNDED: (),
}

TERMINAL_STATES: frozenset[str] = frozenset(
    status for status, successors in VALID_TRANSITIONS.items() if not successors
)

ELEVATED_ROLES: frozenset[str] = frozenset({UserRole.ADMIN, UserRole.SUPER_ADMIN})

_BUYER_EDGES = frozenset({
    (OrderStatus.DRAFT, OrderStatus.PENDING),
    (OrderStatus.PENDING, OrderStatus.POOLING),
    (OrderStatus.PENDING, OrderStatus.CANCELLED),
    (OrderStatus.POOLING, OrderStatus.CANCELLED),
    (OrderStatus.SHIPPING, OrderStatus.DELIVERED),
})

_SUPPLIER_EDGES = frozenset({
    (OrderStatus.PENDING, OrderStatus.PROCESSING),
    (OrderStatus.PENDING, OrderStatus.CANCELLED),
    (OrderStatus.POOLING, OrderStatus.PROCESSING),
    (OrderStatus.PROCESSING, OrderStatus.CONFIRMED),
    (OrderStatus.PROCESSING, OrderStatus.CANCELLED),
    (OrderStatus.CONFIRMED, OrderStatus.CANCELLED),
    (OrderStatus.PAID, OrderStatus.SHIPPING),
    (OrderStatus.SHIPPING, OrderStatus.DELIVERED),
})

# Elevated roles are absent: they may take any edge of the graph.
ROLE_PERMISSIONS: dict[str, frozenset[tuple[str, str]]] = {
    UserRole.CUSTOMER: _BUYER_EDGES,
    UserRole.GENERAL_CONTRACTOR: _BUYER_EDGES,
    UserRole.SUBCONTRACTOR: _BUYER_EDGES,
    UserRole.SUPPLIER: _SUPPLIER_EDGES,
}

# Roles allowed to release a completed pool to fulfilment.
POOL_RELEASE_ROLES: frozenset[str] = frozenset({UserRole.SUPPLIER}) | ELEVATED_ROLES


def is_known_status(status) -> bool:
    return status in VALID_TRANSITIONS


def is_valid_transition(current_status, target_status) -> bool:
    return target_status in VALID_TRANSITIONS.get(current_status, ())


def role_can_transition(role, current_status, target_status) -> bool:
    if role in ELEVATED_ROLES:
        return True
    return (current_status, target_status) in ROLE_PERMISSIONS.get(role, frozenset())


def get_available_transitions(current_status, role) -> list[str]:
    """Statuses ``role`` may move an order to from ``current_status``."""
    return [
        OrderStatus(target)
        for target in VALID_TRANSITIONS.get(current_status, ())
        if role_can_transition(role, current_status, target)
    ]
