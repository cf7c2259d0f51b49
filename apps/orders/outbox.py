"""Transactional outbox for order notifications.

Events are stored in the same transaction as the status change and handed to
the notifier only after commit, so a slow or failing notifier can never undo a
transition.
"""
import logging
from typing import Iterable

from django.db import transaction

from .models import Order, OutboxEvent, Pool, Product
from .notifications import Notifier, get_notifier

logger = logging.getLogger(__name__)


def record_order_status_change(order: Order, from_status: str, to_status: str) -> OutboxEvent:
    return OutboxEvent.objects.create(
        aggregate_type="Order",
        aggregate_id=str(order.pk),
        event_type=OutboxEvent.ORDER_STATUS_CHANGED,
        payload={
            "order_id": str(order.pk),
            "from_status": from_status,
            "to_status": to_status,
            "user_id": order.user_id,
        },
    )


def record_pool_completed(pool: Pool, participants: Iterable[Order]) -> OutboxEvent:
    participants = list(participants)
    return OutboxEvent.objects.create(
        aggregate_type="Pool",
        aggregate_id=str(pool.pk),
        event_type=OutboxEvent.POOL_COMPLETED,
        payload={
            "pool_id": pool.pk,
            "order_ids": [str(o.pk) for o in participants],
            "user_ids": sorted({o.user_id for o in participants}),
        },
    )


def record_pool_progress(pool: Pool, participants: Iterable[Order]) -> OutboxEvent:
    participants = list(participants)
    return OutboxEvent.objects.create(
        aggregate_type="Pool",
        aggregate_id=str(pool.pk),
        event_type=OutboxEvent.POOL_PROGRESS,
        payload={
            "pool_id": pool.pk,
            "current_quantity": pool.current_quantity,
            "target_quantity": pool.target_quantity,
            "remaining_quantity": pool.remaining_quantity,
            "order_ids": [str(o.pk) for o in participants],
            "user_ids": sorted({o.user_id for o in participants}),
        },
    )


def record_low_stock(product: Product) -> OutboxEvent:
    return OutboxEvent.objects.create(
        aggregate_type="Product",
        aggregate_id=str(product.pk),
        event_type=OutboxEvent.LOW_STOCK,
        payload={
            "product_id": product.pk,
            "current_stock": product.current_stock,
            "reorder_point": product.reorder_point,
            "supplier_id": product.supplier_id,
        },
    )


def schedule_dispatch(event_ids, notifier: Notifier | None = None) -> None:
    """Send ``event_ids`` once the surrounding transaction commits."""
    event_ids = list(event_ids)
    if event_ids:
        transaction.on_commit(lambda: dispatch(event_ids, notifier))


def _send(event: OutboxEvent, notifier: Notifier) -> None:
    p = event.payload
    if event.event_type == OutboxEvent.ORDER_STATUS_CHANGED:
        notifier.notify_order_status_change(p["order_id"], p["from_status"], p["to_status"], p["user_id"])
    elif event.event_type == OutboxEvent.POOL_COMPLETED:
        notifier.notify_pool_complete(p["pool_id"], p["user_ids"], p["order_ids"])
    elif event.event_type == OutboxEvent.POOL_PROGRESS:
        notifier.notify_pool_progress(
            p["pool_id"], p["current_quantity"], p["target_quantity"], p["remaining_quantity"],
            p["user_ids"], p["order_ids"],
        )
    elif event.event_type == OutboxEvent.LOW_STOCK:
        notifier.notify_low_stock(p["product_id"], p["current_stock"], p["reorder_point"], p["supplier_id"])
    else:
        raise ValueError(f"Unknown outbox event type: {event.event_type}")


def dispatch(event_ids=None, notifier: Notifier | None = None) -> int:
    """Deliver outbox events; returns how many were sent.

    ``event_ids=None`` picks up every pending or failed event, which is what
    the ``dispatch_outbox`` management command does.
    """
    notifier = notifier or get_notifier()
    qs = OutboxEvent.objects.exclude(status=OutboxEvent.Status.SENT)
    if event_ids is not None:
        qs = qs.filter(pk__in=list(event_ids))

    sent = 0
    for event in qs.order_by("created_at"):
        event.attempts += 1
        try:
            _send(event, notifier)
        except Exception as e:
            logger.exception("outbox dispatch failed event=%s type=%s", event.pk, event.event_type)
            event.status = OutboxEvent.Status.FAILED
            event.last_error = str(e)
        else:
            event.status = OutboxEvent.Status.SENT
            event.last_error = ""
            sent += 1
        event.save(update_fields=["attempts", "status", "last_error"])
    return sent
