"""Transition validation.

Checks run in a fixed order and the first failure wins:

1. the current status is known                 -> INVALID_STATUS
2. the status graph has the edge               -> INVALID_STATUS_TRANSITION
3. the actor's role may take the edge          -> INVALID_ROLE_TRANSITION
4. status-specific rules for the target status -> rule code

Nothing here writes to the database.
"""
from dataclasses import dataclass, field
from typing import Any, Optional

from .errors import NotFoundError
from .models import Order, Product
from .statuses import OrderStatus, is_known_status, is_valid_transition, role_can_transition


@dataclass(frozen=True)
class TransitionError:
    code: str
    message: str


@dataclass
class TransitionContext:
    user_id: Any
    user_role: str
    order_id: Any
    current_status: str
    target_status: str
    metadata: dict = field(default_factory=dict)


def _check_stock(order: Order, context: TransitionContext) -> Optional[TransitionError]:
    needed: dict = {}
    for item in order.items.all():
        needed[item.product_id] = needed.get(item.product_id, 0) + item.quantity
    stock = dict(Product.objects.filter(pk__in=needed).values_list("pk", "current_stock"))
    for product_id, qty in needed.items():
        if stock.get(product_id, 0) < qty:
            return TransitionError("INSUFFICIENT_INVENTORY", f"Insufficient stock for product {product_id}")
    return None


def _check_payment(order: Order, context: TransitionContext) -> Optional[TransitionError]:
    if not context.metadata.get("paymentVerified"):
        return TransitionError("PAYMENT_NOT_VERIFIED", "Payment must be verified before marking an order paid")
    return None


def _check_poolable(order: Order, context: TransitionContext) -> Optional[TransitionError]:
    if not order.items.exists():
        return TransitionError("EMPTY_ORDER", "An order needs at least one item to join a pool")
    return None


def _check_tracking(order: Order, context: TransitionContext) -> Optional[TransitionError]:
    if not (context.metadata.get("trackingNumber") or order.tracking_number):
        return TransitionError("MISSING_TRACKING_NUMBER", "Tracking number is required")
    return None


STATUS_RULES = {
    OrderStatus.POOLING: _check_poolable,
    OrderStatus.PROCESSING: _check_stock,
    OrderStatus.PAID: _check_payment,
    OrderStatus.SHIPPING: _check_tracking,
}


def check_transition(order: Order, context: TransitionContext) -> Optional[TransitionError]:
    """Validate ``context`` against an already loaded ``order``."""
    current, target = context.current_status, context.target_status

    if not is_known_status(current):
        return TransitionError("INVALID_STATUS", f"Invalid current status: {current}")

    if not is_valid_transition(current, target):
        return TransitionError(
            "INVALID_STATUS_TRANSITION", f"Invalid status transition from {current} to {target}"
        )

    if not role_can_transition(context.user_role, current, target):
        return TransitionError(
            "INVALID_ROLE_TRANSITION",
            f"User does not have permission to change status from {current} to {target}",
        )

    rule = STATUS_RULES.get(target)
    return rule(order, context) if rule else None


def validate_transition(context: TransitionContext) -> Optional[TransitionError]:
    """Return ``None`` when the transition is allowed, the first failure otherwise.

    Raises ``NotFoundError`` when the order does not exist.
    """
    order = Order.objects.filter(pk=context.order_id).prefetch_related("items").first()
    if order is None:
        raise NotFoundError(f"Order {context.order_id} not found")
    return check_transition(order, context)
