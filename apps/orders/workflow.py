"""Order status machine.

``OrderWorkflowService.update_order_status`` is the only way an order changes
status. The read, validation and every write (history, order, stock, pool,
outbox) happen in one transaction. Notifications go out after commit.
"""
import logging
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.db import transaction

from . import inventory, outbox, pools
from .errors import InvalidRoleTransitionError, NotFoundError, PoolNotReadyError, error_for
from .inventory import InventorySink, OrmInventory
from .models import Order, OrderHistory, Pool, Product
from .notifications import Notifier
from .statuses import POOL_RELEASE_ROLES, OrderStatus, PoolStatus, get_available_transitions
from .tx import retry_on_tx_failure
from .validation import TransitionContext, TransitionError, check_transition, validate_transition

logger = logging.getLogger(__name__)

# metadata key -> Order field, merged only when a value is supplied
SHIPMENT_FIELDS = {
    "trackingNumber": "tracking_number",
    "carrier": "carrier",
    "deliverySignature": "delivery_signature",
    "deliveryConfirmation": "delivery_confirmation",
}
SHIPMENT_STATES = {OrderStatus.SHIPPING, OrderStatus.DELIVERED}

_STOCK_TARGETS = {OrderStatus.PROCESSING, OrderStatus.CANCELLED, OrderStatus.REFUNDED, OrderStatus.DELIVERED}
# Statuses holding a stock reservation; leaving one for CANCELLED or REFUNDED releases it.
_RESERVED_STATES = {OrderStatus.PROCESSING, OrderStatus.CONFIRMED, OrderStatus.PAID}
_RELEASE_TARGETS = {OrderStatus.CANCELLED, OrderStatus.REFUNDED}


class OrderWorkflowService:
    def __init__(
        self,
        inventory_sink: Optional[InventorySink] = None,
        notifier: Optional[Notifier] = None,
        pool_duration: Optional[timedelta] = None,
    ):
        self._inventory = inventory_sink or OrmInventory()
        # None: resolved from settings.ORDERS_NOTIFIER when events are sent
        self._notifier = notifier
        self._pool_duration = pool_duration or timedelta(days=settings.ORDERS_POOL_DURATION_DAYS)

    # ---------- queries ----------

    @staticmethod
    def get_available_transitions(current_status, role) -> list:
        return get_available_transitions(current_status, role)

    @staticmethod
    def validate_transition(context: TransitionContext) -> Optional[TransitionError]:
        return validate_transition(context)

    # ---------- commands ----------

    @retry_on_tx_failure()
    def update_order_status(self, order_id, target_status, actor_id, actor_role, metadata=None) -> Order:
        with transaction.atomic():
            order = self._transition(order_id, target_status, actor_id, actor_role, metadata or {})
        return order

    @retry_on_tx_failure()
    def release_pool(self, pool_id, actor_id, actor_role) -> list:
        """Move every POOLING order of a completed pool on to PROCESSING."""
        if actor_role not in POOL_RELEASE_ROLES:
            raise InvalidRoleTransitionError("User does not have permission to release this pool")

        with transaction.atomic():
            pool = Pool.objects.select_for_update().filter(pk=pool_id).first()
            if pool is None:
                raise NotFoundError(f"Pool {pool_id} not found")
            if pool.status != PoolStatus.COMPLETED:
                raise PoolNotReadyError(
                    f"Pool {pool_id} has {pool.current_quantity} of {pool.target_quantity} units and is not complete"
                )
            order_ids = list(
                pool.orders.filter(status=OrderStatus.POOLING)
                .order_by("created_at", "pk")
                .values_list("pk", flat=True)
            )
            released = [
                self._transition(
                    order_id, OrderStatus.PROCESSING, actor_id, actor_role, {"note": f"Released from pool {pool.pk}"}
                )
                for order_id in order_ids
            ]
        logger.info("pool released pool=%s orders=%d", pool_id, len(released))
        return released

    # ---------- internals ----------

    def _transition(self, order_id, target_status, actor_id, actor_role, metadata: dict) -> Order:
        # Re-read under lock; the status seen before the transaction may be stale.
        order = Order.objects.select_for_update().filter(pk=order_id).first()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")

        from_status = order.status
        if target_status in _STOCK_TARGETS:
            self._lock_products(order)

        context = TransitionContext(
            user_id=actor_id,
            user_role=actor_role,
            order_id=order.pk,
            current_status=from_status,
            target_status=target_status,
            metadata=metadata,
        )
        error = check_transition(order, context)
        if error is not None:
            logger.info(
                "transition rejected order=%s %s->%s role=%s code=%s",
                order.pk, from_status, target_status, actor_role, error.code,
            )
            raise error_for(error.code, error.message)

        event_ids = self._apply(order, from_status, OrderStatus(target_status), actor_id, metadata)
        outbox.schedule_dispatch(event_ids, self._notifier)
        logger.info("order %s: %s -> %s by %s (%s)", order.pk, from_status, target_status, actor_id, actor_role)
        return order

    @staticmethod
    def _lock_products(order: Order) -> None:
        product_ids = order.items.values_list("product_id", flat=True)
        list(Product.objects.select_for_update().filter(pk__in=product_ids).order_by("pk"))

    def _apply(self, order: Order, from_status, target_status, actor_id, metadata: dict) -> list:
        OrderHistory.objects.create(
            order=order,
            user_id=actor_id,
            from_status=from_status,
            to_status=target_status,
            note=metadata.get("note") or f"Status changed from {from_status} to {target_status}",
            metadata=metadata,
        )

        order.status = target_status
        update_fields = ["status", "updated_at"]
        if target_status in SHIPMENT_STATES:
            for key, attr in SHIPMENT_FIELDS.items():
                value = metadata.get(key)
                if value:
                    setattr(order, attr, value)
                    update_fields.append(attr)

        joining = target_status == OrderStatus.POOLING
        if joining:
            first_item = order.items.select_related("product").first()
            order.pool = pools.find_or_create_pool(first_item.product, self._pool_duration)
            update_fields.append("pool")
        order.save(update_fields=update_fields)

        event_ids = [outbox.record_order_status_change(order, from_status, target_status).pk]

        items = list(order.items.all())
        reference = f"order:{order.pk}"
        if target_status == OrderStatus.PROCESSING:
            event_ids += inventory.reserve(self._inventory, items, reference=reference, actor_id=actor_id)
        elif target_status in _RELEASE_TARGETS and from_status in _RESERVED_STATES:
            event_ids += inventory.release(self._inventory, items, reference=reference, actor_id=actor_id)
        elif target_status == OrderStatus.DELIVERED:
            event_ids += inventory.fulfil(self._inventory, items, reference=reference, actor_id=actor_id)

        if order.pool_id and (joining or from_status == OrderStatus.POOLING):
            departing = order if from_status == OrderStatus.POOLING and target_status != OrderStatus.CANCELLED else None
            settlement = pools.settle(order.pool, departing=departing)
            if settlement.completed:
                event_ids.append(outbox.record_pool_completed(settlement.pool, settlement.participants).pk)
            elif settlement.pool.status == PoolStatus.OPEN and settlement.participants:
                event_ids.append(outbox.record_pool_progress(settlement.pool, settlement.participants).pk)

        return event_ids
