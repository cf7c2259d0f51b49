import logging
from typing import Protocol, Sequence

from django.conf import settings
from django.contrib.auth import get_user_model
from django.utils.module_loading import import_string

from .models import Notification, Order, Pool, Product

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify_order_status_change(self, order_id, from_status: str, to_status: str, user_id) -> None: ...
    def notify_pool_complete(self, pool_id, participant_user_ids: Sequence, order_ids: Sequence) -> None: ...
    def notify_pool_progress(self, pool_id, current_quantity: int, target_quantity: int, remaining_quantity: int,
                             participant_user_ids: Sequence, order_ids: Sequence) -> None: ...
    def notify_low_stock(self, product_id, current_stock: int, reorder_point: int, supplier_id) -> None: ...


class InAppNotifier:
    """Writes in-app ``Notification`` rows for the marketplace dashboards."""

    def notify_order_status_change(self, order_id, from_status, to_status, user_id):
        order = Order.objects.filter(pk=order_id).prefetch_related("items__product").first()
        if order is None:
            logger.warning("status notification skipped, order %s is gone", order_id)
            return
        Notification.objects.create(
            user_id=user_id,
            type=Notification.Type.ORDER_STATUS_CHANGE,
            title=f"Order {to_status.lower()}",
            message=f"Your order {order_id} moved from {from_status} to {to_status}.",
            metadata={
                "orderId": str(order_id),
                "fromStatus": from_status,
                "toStatus": to_status,
                "items": [
                    {"productName": str(item.product), "quantity": item.quantity}
                    for item in order.items.all()
                ],
            },
        )

    def notify_pool_complete(self, pool_id, participant_user_ids, order_ids):
        pool = Pool.objects.select_related("product").filter(pk=pool_id).first()
        if pool is None:
            logger.warning("pool notification skipped, pool %s is gone", pool_id)
            return
        users = get_user_model().objects.filter(pk__in=set(participant_user_ids))
        Notification.objects.bulk_create([
            Notification(
                user=user,
                type=Notification.Type.POOL_COMPLETE,
                title="Pool complete",
                message=(
                    f"The group buy for {pool.product} reached {pool.current_quantity} "
                    f"of {pool.target_quantity} units and is ready for fulfilment."
                ),
                metadata={"poolId": pool.pk, "orderIds": [str(o) for o in order_ids]},
            )
            for user in users
        ])

    def notify_pool_progress(self, pool_id, current_quantity, target_quantity, remaining_quantity,
                             participant_user_ids, order_ids):
        users = get_user_model().objects.filter(pk__in=set(participant_user_ids))
        Notification.objects.bulk_create([
            Notification(
                user=user,
                type=Notification.Type.POOL_PROGRESS,
                title="Pool progress",
                message=(
                    f"The group buy has {current_quantity} of {target_quantity} units, "
                    f"{remaining_quantity} more needed."
                ),
                metadata={
                    "poolId": pool_id,
                    "currentQuantity": current_quantity,
                    "targetQuantity": target_quantity,
                    "remainingQuantity": remaining_quantity,
                    "orderIds": [str(o) for o in order_ids],
                },
            )
            for user in users
        ])

    def notify_low_stock(self, product_id, current_stock, reorder_point, supplier_id):
        if supplier_id is None:
            logger.warning("low stock notification skipped, product %s has no supplier", product_id)
            return
        product = Product.objects.filter(pk=product_id).first()
        Notification.objects.create(
            user_id=supplier_id,
            type=Notification.Type.LOW_STOCK,
            title="Low stock alert",
            message=f"{product or product_id} is down to {current_stock} units (reorder point {reorder_point}).",
            metadata={"productId": product_id, "currentStock": current_stock, "reorderPoint": reorder_point},
        )


def get_notifier() -> Notifier:
    """Instantiate the notifier named by ``ORDERS_NOTIFIER``."""
    return import_string(settings.ORDERS_NOTIFIER)()
