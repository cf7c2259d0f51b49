import uuid

import pytest
from django.db import transaction

from apps.orders.errors import (
    InvalidRoleTransitionError,
    InvalidStatusTransitionError,
    NotFoundError,
    TransitionRuleError,
)
from apps.orders.models import Order, OrderHistory, OutboxEvent, Product
from apps.orders.statuses import OrderStatus, UserRole
from apps.orders.workflow import OrderWorkflowService

from .conftest import FailingNotifier

pytestmark = pytest.mark.django_db(transaction=True)


def _stock(product):
    product.refresh_from_db()
    return product.current_stock, product.reserved_stock, product.total_sales


def test_customer_cancels_pending_order_without_touching_stock(workflow, customer, make_product, make_order):
    product = make_product(stock=10)
    order = make_order(customer, [(product, 3)])

    workflow.update_order_status(order.pk, OrderStatus.CANCELLED, customer.pk, UserRole.CUSTOMER)

    order.refresh_from_db()
    assert order.status == OrderStatus.CANCELLED
    assert _stock(product) == (10, 0, 0)


def test_admin_processing_reserves_stock(workflow, customer, admin, make_product, make_order):
    p1, p2 = make_product(stock=10), make_product(stock=5)
    order = make_order(customer, [(p1, 3), (p2, 5)])

    workflow.update_order_status(order.pk, OrderStatus.PROCESSING, admin.pk, UserRole.ADMIN)

    assert _stock(p1) == (7, 3, 0)
    assert _stock(p2) == (0, 5, 0)


def test_items_of_the_same_product_are_reserved_together(workflow, customer, admin, make_product, make_order):
    product = make_product(stock=10)
    order = make_order(customer, [(product, 2), (product, 4)])

    workflow.update_order_status(order.pk, OrderStatus.PROCESSING, admin.pk, UserRole.ADMIN)

    assert _stock(product) == (4, 6, 0)


def test_customer_cannot_process_an_order(workflow, customer, make_product, make_order):
    order = make_order(customer, [(make_product(), 1)])

    with pytest.raises(InvalidRoleTransitionError, match="User does not have permission"):
        workflow.update_order_status(order.pk, OrderStatus.PROCESSING, customer.pk, UserRole.CUSTOMER)


def test_customer_cannot_cancel_a_processing_order(workflow, customer, make_product, make_order):
    order = make_order(customer, [(make_product(stock=9, reserved=1), 1)], status=OrderStatus.PROCESSING)

    with pytest.raises(InvalidRoleTransitionError) as exc:
        workflow.update_order_status(order.pk, OrderStatus.CANCELLED, customer.pk, UserRole.CUSTOMER)
    assert exc.value.code == "INVALID_ROLE_TRANSITION"


def test_delivered_order_cannot_be_reopened(workflow, customer, admin, make_product, make_order):
    order = make_order(customer, [(make_product(), 1)], status=OrderStatus.DELIVERED)

    with pytest.raises(InvalidStatusTransitionError, match="Invalid status transition"):
        workflow.update_order_status(order.pk, OrderStatus.PROCESSING, admin.pk, UserRole.ADMIN)


def test_cancel_after_processing_restores_stock(workflow, customer, admin, make_product, make_order):
    product = make_product(stock=10)
    order = make_order(customer, [(product, 4)])

    workflow.update_order_status(order.pk, OrderStatus.PROCESSING, admin.pk, UserRole.ADMIN)
    workflow.update_order_status(order.pk, OrderStatus.CANCELLED, admin.pk, UserRole.ADMIN)

    assert _stock(product) == (10, 0, 0)


def test_cancel_after_confirmation_restores_stock(workflow, customer, admin, make_product, make_order):
    product = make_product(stock=6, reserved=4)
    order = make_order(customer, [(product, 4)], status=OrderStatus.CONFIRMED)

    workflow.update_order_status(order.pk, OrderStatus.CANCELLED, admin.pk, UserRole.ADMIN)

    assert _stock(product) == (10, 0, 0)


def test_refund_after_payment_restores_stock(workflow, customer, admin, make_product, make_order):
    product = make_product(stock=10)
    order = make_order(customer, [(product, 4)])

    workflow.update_order_status(order.pk, OrderStatus.PROCESSING, admin.pk, UserRole.ADMIN)
    workflow.update_order_status(order.pk, OrderStatus.CONFIRMED, admin.pk, UserRole.ADMIN)
    workflow.update_order_status(order.pk, OrderStatus.PAID, admin.pk, UserRole.ADMIN, {"paymentVerified": True})
    assert _stock(product) == (6, 4, 0)

    workflow.update_order_status(order.pk, OrderStatus.REFUNDED, admin.pk, UserRole.ADMIN)

    order.refresh_from_db()
    assert order.status == OrderStatus.REFUNDED
    assert _stock(product) == (10, 0, 0)


def test_shipment_fields_ignored_outside_shipping(workflow, customer, make_product, make_order):
    order = make_order(customer, [(make_product(), 1)])

    workflow.update_order_status(
        order.pk, OrderStatus.CANCELLED, customer.pk, UserRole.CUSTOMER,
        {"trackingNumber": "BOGUS", "carrier": "UPS", "deliverySignature": "x"},
    )

    order.refresh_from_db()
    assert order.status == OrderStatus.CANCELLED
    assert (order.tracking_number, order.carrier, order.delivery_signature) == ("", "", "")


def test_each_transition_writes_exactly_one_history_row(workflow, customer, admin, make_product, make_order):
    order = make_order(customer, [(make_product(), 1)])

    workflow.update_order_status(order.pk, OrderStatus.PROCESSING, admin.pk, UserRole.ADMIN)

    order.refresh_from_db()
    assert order.status == OrderStatus.PROCESSING
    (row,) = OrderHistory.objects.filter(order=order)
    assert (row.from_status, row.to_status, row.user_id) == (OrderStatus.PENDING, OrderStatus.PROCESSING, admin.pk)
    assert row.note == "Status changed from PENDING to PROCESSING"


def test_history_keeps_the_callers_note_and_metadata(workflow, customer, admin, make_product, make_order):
    order = make_order(customer, [(make_product(), 1)])

    workflow.update_order_status(
        order.pk, OrderStatus.PROCESSING, admin.pk, UserRole.ADMIN, {"note": "rush", "supplierId": "42"}
    )

    row = order.history.get()
    assert row.note == "rush"
    assert row.metadata == {"note": "rush", "supplierId": "42"}


def test_shipment_fields_are_merged_but_never_blanked(workflow, customer, supplier, make_product, make_order):
    order = make_order(customer, [(make_product(stock=0, reserved=2), 2)], status=OrderStatus.PAID)

    workflow.update_order_status(
        order.pk, OrderStatus.SHIPPING, supplier.pk, UserRole.SUPPLIER,
        {"trackingNumber": "1Z999", "carrier": "UPS"},
    )
    workflow.update_order_status(
        order.pk, OrderStatus.DELIVERED, supplier.pk, UserRole.SUPPLIER,
        {"trackingNumber": "", "deliverySignature": "J. Kim"},
    )

    order.refresh_from_db()
    assert order.tracking_number == "1Z999"
    assert order.carrier == "UPS"
    assert order.delivery_signature == "J. Kim"


def test_full_lifecycle_turns_reservation_into_sales(workflow, customer, admin, supplier, make_product, make_order):
    product = make_product(stock=20)
    order = make_order(customer, [(product, 5)])

    workflow.update_order_status(order.pk, OrderStatus.PROCESSING, supplier.pk, UserRole.SUPPLIER)
    workflow.update_order_status(order.pk, OrderStatus.CONFIRMED, supplier.pk, UserRole.SUPPLIER)
    workflow.update_order_status(order.pk, OrderStatus.PAID, admin.pk, UserRole.ADMIN, {"paymentVerified": True})
    workflow.update_order_status(
        order.pk, OrderStatus.SHIPPING, supplier.pk, UserRole.SUPPLIER, {"trackingNumber": "TRK-1"}
    )
    workflow.update_order_status(order.pk, OrderStatus.DELIVERED, customer.pk, UserRole.CUSTOMER)

    assert _stock(product) == (15, 0, 5)
    assert list(order.history.values_list("to_status", flat=True)) == [
        OrderStatus.PROCESSING, OrderStatus.CONFIRMED, OrderStatus.PAID, OrderStatus.SHIPPING, OrderStatus.DELIVERED,
    ]


def test_rejected_transition_changes_nothing(workflow, customer, admin, make_product, make_order, notifier):
    product = make_product(stock=2)
    order = make_order(customer, [(product, 3)])

    with pytest.raises(TransitionRuleError) as exc:
        workflow.update_order_status(order.pk, OrderStatus.PROCESSING, admin.pk, UserRole.ADMIN)
    assert exc.value.code == "INSUFFICIENT_INVENTORY"

    order.refresh_from_db()
    assert order.status == OrderStatus.PENDING
    assert _stock(product) == (2, 0, 0)
    assert not OrderHistory.objects.exists()
    assert not OutboxEvent.objects.exists()
    assert notifier.status_changes == []


def test_payment_rule_is_enforced(workflow, customer, admin, make_product, make_order):
    order = make_order(customer, [(make_product(stock=0, reserved=1), 1)], status=OrderStatus.CONFIRMED)

    with pytest.raises(TransitionRuleError) as exc:
        workflow.update_order_status(order.pk, OrderStatus.PAID, admin.pk, UserRole.ADMIN)
    assert exc.value.code == "PAYMENT_NOT_VERIFIED"


def test_missing_order(workflow, admin):
    with pytest.raises(NotFoundError):
        workflow.update_order_status(uuid.uuid4(), OrderStatus.PROCESSING, admin.pk, UserRole.ADMIN)


def test_status_is_reread_inside_the_transaction(workflow, customer, admin, make_product, make_order):
    order = make_order(customer, [(make_product(), 1)])
    stale = Order.objects.get(pk=order.pk)
    Order.objects.filter(pk=order.pk).update(status=OrderStatus.CANCELLED)

    with pytest.raises(InvalidStatusTransitionError):
        workflow.update_order_status(stale.pk, OrderStatus.PROCESSING, admin.pk, UserRole.ADMIN)


def test_notification_is_sent_after_commit(workflow, customer, admin, make_product, make_order, notifier):
    order = make_order(customer, [(make_product(), 1)])

    with transaction.atomic():
        workflow.update_order_status(order.pk, OrderStatus.PROCESSING, admin.pk, UserRole.ADMIN)
        assert notifier.status_changes == []

    assert notifier.status_changes == [(str(order.pk), OrderStatus.PENDING, OrderStatus.PROCESSING, customer.pk)]
    assert OutboxEvent.objects.get().status == OutboxEvent.Status.SENT


def test_rolled_back_transition_sends_nothing(workflow, customer, admin, make_product, make_order, notifier):
    order = make_order(customer, [(make_product(), 1)])

    with pytest.raises(RuntimeError):
        with transaction.atomic():
            workflow.update_order_status(order.pk, OrderStatus.PROCESSING, admin.pk, UserRole.ADMIN)
            raise RuntimeError("boom")

    order.refresh_from_db()
    assert order.status == OrderStatus.PENDING
    assert notifier.status_changes == []
    assert not OutboxEvent.objects.exists()


def test_notifier_failure_does_not_undo_the_transition(customer, admin, make_product, make_order):
    product = make_product(stock=10)
    order = make_order(customer, [(product, 2)])
    workflow = OrderWorkflowService(notifier=FailingNotifier())

    workflow.update_order_status(order.pk, OrderStatus.PROCESSING, admin.pk, UserRole.ADMIN)

    order.refresh_from_db()
    assert order.status == OrderStatus.PROCESSING
    assert _stock(product) == (8, 2, 0)
    event = OutboxEvent.objects.get()
    assert event.status == OutboxEvent.Status.FAILED
    assert event.attempts == 1
    assert event.last_error == "smtp down"


class RecordingInventory:
    def __init__(self):
        self.calls = []

    def adjust_stock(self, product_id, **deltas):
        self.calls.append((product_id, deltas))


def test_inventory_sink_is_injectable(customer, admin, make_product, make_order, notifier):
    product = make_product(stock=10)
    order = make_order(customer, [(product, 3)])
    sink = RecordingInventory()

    OrderWorkflowService(inventory_sink=sink, notifier=notifier).update_order_status(
        order.pk, OrderStatus.PROCESSING, admin.pk, UserRole.ADMIN
    )

    ((product_id, deltas),) = sink.calls
    assert product_id == product.pk
    assert (deltas["current_stock_delta"], deltas["reserved_stock_delta"], deltas["total_sales_delta"]) == (-3, 3, 0)
    assert deltas["reference"] == f"order:{order.pk}"
    assert deltas["actor_id"] == admin.pk
    assert Product.objects.get(pk=product.pk).current_stock == 10


def test_available_transitions_passthrough():
    assert OrderWorkflowService.get_available_transitions(OrderStatus.DELIVERED, UserRole.ADMIN) == []
