"""Group-buy pools.

A pool gathers POOLING orders for one product until their combined quantity
reaches the product's minimum order quantity. Callers hold the transaction;
every function here expects to run inside ``transaction.atomic``.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from django.db.models import Sum
from django.utils import timezone

from .models import Order, OrderItem, Pool, Product
from .statuses import OrderStatus, PoolStatus

logger = logging.getLogger(__name__)


@dataclass
class Settlement:
    pool: Pool
    # Orders counted by this settle: the pooled orders, plus the departing one on completion.
    participants: list = field(default_factory=list)
    completed: bool = False


def find_or_create_pool(product: Product, duration: timedelta) -> Pool:
    """Open pool for ``product``; expired open pools are locked on the way."""
    # The product row lock serializes joins, so two first joiners cannot both create a pool.
    Product.objects.select_for_update().get(pk=product.pk)

    now = timezone.now()
    expired = Pool.objects.filter(product=product, status=PoolStatus.OPEN, expires_at__lte=now).update(
        status=PoolStatus.LOCKED
    )
    if expired:
        logger.info("locked %d expired pool(s) for product=%s", expired, product.pk)

    pool = (
        Pool.objects.select_for_update()
        .filter(product=product, status=PoolStatus.OPEN)
        .order_by("created_at", "pk")
        .first()
    )
    if pool is None:
        pool = Pool.objects.create(
            product=product,
            target_quantity=product.min_order_quantity,
            expires_at=now + duration,
        )
        logger.info("pool created pool=%s product=%s target=%d", pool.pk, product.pk, pool.target_quantity)
    return pool


def _quantity(pool: Pool, orders) -> int:
    total = (
        OrderItem.objects.filter(order__in=orders, product_id=pool.product_id)
        .aggregate(total=Sum("quantity"))["total"]
    )
    return total or 0


def settle(pool: Pool, departing: Optional[Order] = None) -> Settlement:
    """Recompute ``pool.current_quantity`` after a join, leave or exit.

    ``departing`` is an order leaving POOLING for fulfilment; it still counts
    toward completing the pool. A COMPLETED pool is frozen and comes back
    untouched with no participants.
    """
    pool = Pool.objects.select_for_update().get(pk=pool.pk)
    if pool.status == PoolStatus.COMPLETED:
        return Settlement(pool)

    pooling = list(Order.objects.filter(pool=pool, status=OrderStatus.POOLING).order_by("created_at", "pk"))
    participants = pooling + ([departing] if departing is not None else [])
    quantity = _quantity(pool, participants)

    if pool.status == PoolStatus.OPEN and quantity >= pool.target_quantity:
        pool.current_quantity = quantity
        pool.status = PoolStatus.COMPLETED
        pool.completed_at = timezone.now()
        pool.save(update_fields=["current_quantity", "status", "completed_at"])
        logger.info("pool completed pool=%s quantity=%d/%d", pool.pk, quantity, pool.target_quantity)
        return Settlement(pool, participants, completed=True)

    pool.current_quantity = _quantity(pool, pooling) if departing is not None else quantity
    pool.save(update_fields=["current_quantity"])
    logger.debug("pool updated pool=%s quantity=%d/%d", pool.pk, pool.current_quantity, pool.target_quantity)
    return Settlement(pool, pooling)
