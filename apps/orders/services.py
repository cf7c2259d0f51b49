# apps/orders/services.py
import logging
from decimal import Decimal

from django.core.exceptions import PermissionDenied
from django.db import transaction
from rest_framework import serializers

from .errors import NotFoundError, OrderLockedError
from .models import Order, OrderItem, Product
from .statuses import OrderStatus

logger = logging.getLogger(__name__)

EDITABLE_STATES = {OrderStatus.DRAFT, OrderStatus.PENDING}


def _build_items(order: Order, items: list[dict]) -> tuple[list[OrderItem], Decimal]:
    # Batch lookup and row locks so prices are read once and consistently.
    ids = sorted({int(i["product_id"]) for i in items})
    by_id = {p.pk: p for p in Product.objects.select_for_update().filter(pk__in=ids).order_by("pk")}

    total = Decimal("0.00")
    bulk_items = []
    for it in items:
        p = by_id.get(int(it["product_id"]))
        if p is None:
            raise serializers.ValidationError({"items": [f"Unknown product: {it['product_id']}"]})
        q = int(it["quantity"])
        bulk_items.append(OrderItem(order=order, product=p, quantity=q, unit_price=p.price))
        total += p.price * q
    return bulk_items, total


@transaction.atomic
def create_order(*, user, items: list[dict], draft: bool = False) -> Order:
    """items = [{'product_id': 1, 'quantity': 2}, ...]"""
    order = Order.objects.create(
        user=user,
        total_amount=Decimal("0.00"),
        status=OrderStatus.DRAFT if draft else OrderStatus.PENDING,
    )
    bulk_items, total = _build_items(order, items)
    OrderItem.objects.bulk_create(bulk_items)
    order.total_amount = total
    order.save(update_fields=["total_amount"])
    logger.info("order created: %s user=%s total=%s", order.pk, user.pk, total)
    return order


def _owned_order(order_id, user) -> Order:
    order = Order.objects.select_for_update().filter(pk=order_id).first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    if order.user_id != user.pk and not user.is_elevated:
        raise PermissionDenied("Only the order owner can change this order")
    return order


@transaction.atomic
def replace_items(*, order_id, user, items: list[dict]) -> Order:
    order = _owned_order(order_id, user)
    if order.status not in EDITABLE_STATES:
        raise OrderLockedError(f"Items cannot change once an order is {order.status}")

    order.items.all().delete()
    bulk_items, total = _build_items(order, items)
    OrderItem.objects.bulk_create(bulk_items)
    order.total_amount = total
    order.save(update_fields=["total_amount", "updated_at"])
    logger.info("order items replaced: %s total=%s", order.pk, total)
    return order


@transaction.atomic
def delete_order(*, order_id, user) -> None:
    order = _owned_order(order_id, user)
    if order.status != OrderStatus.PENDING:
        raise OrderLockedError(f"Only pending orders can be deleted, order is {order.status}")
    order.delete()
    logger.info("order deleted: %s by user=%s", order_id, user.pk)
