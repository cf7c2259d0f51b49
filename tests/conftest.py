import itertools
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model

from apps.orders.models import Order, OrderItem, Product
from apps.orders.statuses import OrderStatus, UserRole
from apps.orders.workflow import OrderWorkflowService

_seq = itertools.count(1)


class RecordingNotifier:
    def __init__(self):
        self.status_changes = []
        self.pool_completions = []
        self.pool_progress = []
        self.low_stock = []

    def notify_order_status_change(self, order_id, from_status, to_status, user_id):
        self.status_changes.append((str(order_id), from_status, to_status, user_id))

    def notify_pool_complete(self, pool_id, participant_user_ids, order_ids):
        self.pool_completions.append((pool_id, sorted(participant_user_ids), sorted(order_ids)))

    def notify_pool_progress(self, pool_id, current_quantity, target_quantity, remaining_quantity,
                             participant_user_ids, order_ids):
        self.pool_progress.append((pool_id, current_quantity, target_quantity, remaining_quantity, sorted(order_ids)))

    def notify_low_stock(self, product_id, current_stock, reorder_point, supplier_id):
        self.low_stock.append((product_id, current_stock, reorder_point, supplier_id))


class FailingNotifier:
    def notify_order_status_change(self, *args):
        raise RuntimeError("smtp down")

    def notify_pool_complete(self, *args):
        raise RuntimeError("smtp down")

    def notify_pool_progress(self, *args):
        raise RuntimeError("smtp down")

    def notify_low_stock(self, *args):
        raise RuntimeError("smtp down")


@pytest.fixture
def make_user():
    def make(role=UserRole.CUSTOMER, **extra):
        n = next(_seq)
        return get_user_model().objects.create_user(f"user{n}@test.com", password="pw", role=role, **extra)
    return make


@pytest.fixture
def customer(make_user):
    return make_user(UserRole.CUSTOMER)


@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN)


@pytest.fixture
def supplier(make_user):
    return make_user(UserRole.SUPPLIER)


@pytest.fixture
def make_product():
    def make(*, price="10.00", stock=100, reserved=0, min_order_quantity=1, **extra):
        n = next(_seq)
        return Product.objects.create(
            sku=extra.pop("sku", f"SKU-{n}"),
            name=extra.pop("name", f"Product {n}"),
            price=Decimal(price),
            current_stock=stock,
            reserved_stock=reserved,
            min_order_quantity=min_order_quantity,
            **extra,
        )
    return make


@pytest.fixture
def make_order():
    """Create an order directly in ``status``; items are ``(product, quantity)`` pairs."""
    def make(user, items, status=OrderStatus.PENDING, **extra):
        order = Order.objects.create(user=user, status=status, **extra)
        OrderItem.objects.bulk_create([
            OrderItem(order=order, product=p, quantity=q, unit_price=p.price) for p, q in items
        ])
        order.total_amount = order.calculate_total()
        order.save(update_fields=["total_amount"])
        return order
    return make


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def workflow(notifier):
    return OrderWorkflowService(notifier=notifier)
