# apps/orders/models.py
import uuid
from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models

from .statuses import OrderStatus, PoolStatus


class Product(models.Model):
    sku = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=200, blank=True)
    price = models.DecimalField(max_digits=12, decimal_places=2)
    current_stock = models.PositiveIntegerField(default=0)
    reserved_stock = models.PositiveIntegerField(default=0)
    # Pool target for group buys of this product.
    min_order_quantity = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    # Low-stock alert fires once current stock falls to this level.
    reorder_point = models.PositiveIntegerField(default=0)
    total_sales = models.PositiveIntegerField(default=0)
    supplier = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="products",
    )

    def __str__(self):
        return self.name or self.sku


class Pool(models.Model):
    """Group buy: POOLING orders for one product adding up to a minimum quantity."""

    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="pools")
    target_quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    current_quantity = models.PositiveIntegerField(default=0)
    expires_at = models.DateTimeField()
    status = models.CharField(max_length=20, choices=PoolStatus.choices, default=PoolStatus.OPEN)
    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [models.Index(fields=["product", "status"], name="orders_pool_product_status_idx")]

    def __str__(self):
        return f"Pool {self.pk} {self.product_id} {self.current_quantity}/{self.target_quantity}"

    @property
    def remaining_quantity(self) -> int:
        return max(0, self.target_quantity - self.current_quantity)


class Order(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="orders")
    status = models.CharField(
        max_length=20, choices=OrderStatus.choices, default=OrderStatus.PENDING, db_index=True
    )
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    pool = models.ForeignKey(Pool, on_delete=models.SET_NULL, null=True, blank=True, related_name="orders")
    tracking_number = models.CharField(max_length=100, blank=True)
    carrier = models.CharField(max_length=100, blank=True)
    delivery_signature = models.CharField(max_length=200, blank=True)
    delivery_confirmation = models.CharField(max_length=200, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"Order {self.id} ({self.status})"

    def calculate_total(self) -> Decimal:
        return sum((item.unit_price * item.quantity for item in self.items.all()), Decimal("0.00"))


class OrderItem(models.Model):
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT)
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        ordering = ["id"]


class OrderHistory(models.Model):
    """Audit trail, one row per committed status transition. Never updated."""

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="history")
    # Null for transitions the system takes on its own.
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    from_status = models.CharField(max_length=20, choices=OrderStatus.choices)
    to_status = models.CharField(max_length=20, choices=OrderStatus.choices)
    note = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]
        verbose_name_plural = "order history"


class InventoryLog(models.Model):
    """One row per stock adjustment, written in the same transaction."""

    class Kind(models.TextChoices):
        RESERVE = "RESERVE", "Reserve"
        RELEASE = "RELEASE", "Release"
        SALE = "SALE", "Sale"
        ADJUSTMENT = "ADJUSTMENT", "Adjustment"

    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="inventory_logs")
    kind = models.CharField(max_length=20, choices=Kind.choices)
    current_stock_delta = models.IntegerField(default=0)
    reserved_stock_delta = models.IntegerField(default=0)
    total_sales_delta = models.IntegerField(default=0)
    current_stock_after = models.PositiveIntegerField()
    reference = models.CharField(max_length=64, blank=True)   # 'order:<uuid>'
    reason = models.TextField(blank=True)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]


class Notification(models.Model):
    class Type(models.TextChoices):
        ORDER_STATUS_CHANGE = "ORDER_STATUS_CHANGE", "Order status change"
        POOL_COMPLETE = "POOL_COMPLETE", "Pool complete"
        POOL_PROGRESS = "POOL_PROGRESS", "Pool progress"
        LOW_STOCK = "LOW_STOCK", "Low stock"

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="notifications")
    type = models.CharField(max_length=32, choices=Type.choices)
    title = models.CharField(max_length=200)
    message = models.TextField()
    metadata = models.JSONField(default=dict, blank=True)
    read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]


class OutboxEvent(models.Model):
    """Transactional outbox: written with the transition, sent after commit."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        SENT = "sent", "Sent"
        FAILED = "failed", "Failed"

    ORDER_STATUS_CHANGED = "ORDER_STATUS_CHANGED"
    POOL_COMPLETED = "POOL_COMPLETED"
    POOL_PROGRESS = "POOL_PROGRESS"
    LOW_STOCK = "LOW_STOCK"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    aggregate_type = models.CharField(max_length=50)   # 'Order' / 'Pool' / 'Product'
    aggregate_id = models.CharField(max_length=64)
    event_type = models.CharField(max_length=50)
    payload = models.JSONField()
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at"]


class IdempotencyKey(models.Model):
    key = models.CharField(max_length=128)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="+")
    request_hash = models.CharField(max_length=64)
    status_code = models.PositiveSmallIntegerField()
    response_body = models.JSONField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["key", "user"], name="uniq_idempotency_key_per_user"),
        ]
