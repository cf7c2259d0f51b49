"""Stock adjustments applied inside the caller's transaction.

Every adjustment leaves an ``InventoryLog`` row. A decrease that takes
``current_stock`` to the product's reorder point or below records a LOW_STOCK
outbox event; helpers return the ids of those events so the caller can
dispatch them after commit.
"""
import logging
from typing import Iterable, Optional, Protocol

from django.db.models import F

from . import outbox
from .errors import NotFoundError
from .models import InventoryLog, OrderItem, OutboxEvent, Product

logger = logging.getLogger(__name__)


class InventorySink(Protocol):
    def adjust_stock(self, product_id, *, current_stock_delta: int = 0, reserved_stock_delta: int = 0,
                     total_sales_delta: int = 0, kind: str = InventoryLog.Kind.ADJUSTMENT,
                     reference: str = "", actor_id=None) -> Optional[OutboxEvent]: ...


def _reason(kind: str, delta: int, reference: str) -> str:
    action = "increased" if delta >= 0 else "decreased"
    reason = f"Stock {action} by {abs(delta)} units due to {kind.lower()}"
    return f"{reason} (ref: {reference})" if reference else reason


class OrmInventory:
    """Applies deltas with ``F()`` expressions so concurrent writers never lose updates."""

    def adjust_stock(self, product_id, *, current_stock_delta=0, reserved_stock_delta=0, total_sales_delta=0,
                     kind=InventoryLog.Kind.ADJUSTMENT, reference="", actor_id=None):
        updated = Product.objects.filter(pk=product_id).update(
            current_stock=F("current_stock") + current_stock_delta,
            reserved_stock=F("reserved_stock") + reserved_stock_delta,
            total_sales=F("total_sales") + total_sales_delta,
        )
        if not updated:
            raise NotFoundError(f"Product {product_id} not found")

        product = Product.objects.only("current_stock", "reorder_point", "supplier_id").get(pk=product_id)
        InventoryLog.objects.create(
            product_id=product_id,
            kind=kind,
            current_stock_delta=current_stock_delta,
            reserved_stock_delta=reserved_stock_delta,
            total_sales_delta=total_sales_delta,
            current_stock_after=product.current_stock,
            reference=reference,
            reason=_reason(kind, current_stock_delta or reserved_stock_delta, reference),
            user_id=actor_id,
        )
        logger.debug(
            "stock adjusted product=%s current=%+d reserved=%+d sales=%+d",
            product_id, current_stock_delta, reserved_stock_delta, total_sales_delta,
        )

        if current_stock_delta < 0 and product.current_stock <= product.reorder_point:
            logger.info(
                "low stock product=%s current=%d reorder_point=%d",
                product_id, product.current_stock, product.reorder_point,
            )
            return outbox.record_low_stock(product)
        return None


def _quantities_by_product(items: Iterable[OrderItem]) -> dict:
    totals: dict = {}
    for item in items:
        totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    # Fixed order keeps row locks from deadlocking against another order.
    return dict(sorted(totals.items()))


def _apply(sink: InventorySink, items, kind, sign_current, sign_reserved, sign_sales, reference, actor_id) -> list:
    event_ids = []
    for product_id, qty in _quantities_by_product(items).items():
        event = sink.adjust_stock(
            product_id,
            current_stock_delta=sign_current * qty,
            reserved_stock_delta=sign_reserved * qty,
            total_sales_delta=sign_sales * qty,
            kind=kind,
            reference=reference,
            actor_id=actor_id,
        )
        if event is not None:
            event_ids.append(event.pk)
    return event_ids


def reserve(sink: InventorySink, items: Iterable[OrderItem], *, reference="", actor_id=None) -> list:
    return _apply(sink, items, InventoryLog.Kind.RESERVE, -1, 1, 0, reference, actor_id)


def release(sink: InventorySink, items: Iterable[OrderItem], *, reference="", actor_id=None) -> list:
    return _apply(sink, items, InventoryLog.Kind.RELEASE, 1, -1, 0, reference, actor_id)


def fulfil(sink: InventorySink, items: Iterable[OrderItem], *, reference="", actor_id=None) -> list:
    """Delivered goods leave the reservation and count as sales."""
    return _apply(sink, items, InventoryLog.Kind.SALE, 0, -1, 1, reference, actor_id)
