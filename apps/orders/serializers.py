from rest_framework import serializers

from .models import InventoryLog, Order, OrderHistory, OrderItem, Pool
from .statuses import OrderStatus


class OrderItemIn(serializers.Serializer):
    productId = serializers.IntegerField(source="product_id", min_value=1)
    quantity = serializers.IntegerField(min_value=1)


class OrderItemsIn(serializers.Serializer):
    items = OrderItemIn(many=True)

    def validate_items(self, items):
        if not items:
            raise serializers.ValidationError("At least one item is required.")
        return items


class OrderCreateIn(OrderItemsIn):
    draft = serializers.BooleanField(required=False, default=False)


class StatusMetadataIn(serializers.Serializer):
    note = serializers.CharField(required=False, allow_blank=True, max_length=2000)
    trackingNumber = serializers.CharField(required=False, allow_blank=True, max_length=100)
    carrier = serializers.CharField(required=False, allow_blank=True, max_length=100)
    deliverySignature = serializers.CharField(required=False, allow_blank=True, max_length=200)
    deliveryConfirmation = serializers.CharField(required=False, allow_blank=True, max_length=200)
    paymentVerified = serializers.BooleanField(required=False)
    supplierId = serializers.CharField(required=False, allow_blank=True)


class StatusUpdateIn(serializers.Serializer):
    targetStatus = serializers.ChoiceField(source="target_status", choices=OrderStatus.choices)
    metadata = StatusMetadataIn(required=False)


class OrderItemOut(serializers.ModelSerializer):
    productId = serializers.IntegerField(source="product_id")
    unitPrice = serializers.DecimalField(source="unit_price", max_digits=12, decimal_places=2)

    class Meta:
        model = OrderItem
        fields = ["productId", "quantity", "unitPrice"]


class OrderOut(serializers.ModelSerializer):
    userId = serializers.IntegerField(source="user_id")
    totalAmount = serializers.DecimalField(source="total_amount", max_digits=12, decimal_places=2)
    poolId = serializers.IntegerField(source="pool_id", allow_null=True)
    trackingNumber = serializers.CharField(source="tracking_number")
    deliverySignature = serializers.CharField(source="delivery_signature")
    deliveryConfirmation = serializers.CharField(source="delivery_confirmation")
    createdAt = serializers.DateTimeField(source="created_at")
    updatedAt = serializers.DateTimeField(source="updated_at")
    items = OrderItemOut(many=True)

    class Meta:
        model = Order
        fields = [
            "id", "status", "userId", "totalAmount", "poolId", "trackingNumber", "carrier",
            "deliverySignature", "deliveryConfirmation", "createdAt", "updatedAt", "items",
        ]


class OrderHistoryOut(serializers.ModelSerializer):
    userId = serializers.IntegerField(source="user_id", allow_null=True)
    fromStatus = serializers.CharField(source="from_status")
    toStatus = serializers.CharField(source="to_status")
    createdAt = serializers.DateTimeField(source="created_at")

    class Meta:
        model = OrderHistory
        fields = ["id", "userId", "fromStatus", "toStatus", "note", "metadata", "createdAt"]


class PoolOut(serializers.ModelSerializer):
    productId = serializers.IntegerField(source="product_id")
    targetQuantity = serializers.IntegerField(source="target_quantity")
    currentQuantity = serializers.IntegerField(source="current_quantity")
    remainingQuantity = serializers.IntegerField(source="remaining_quantity")
    expiresAt = serializers.DateTimeField(source="expires_at")
    completedAt = serializers.DateTimeField(source="completed_at", allow_null=True)

    class Meta:
        model = Pool
        fields = [
            "id", "productId", "status", "targetQuantity", "currentQuantity",
            "remainingQuantity", "expiresAt", "completedAt",
        ]


class InventoryLogOut(serializers.ModelSerializer):
    productId = serializers.IntegerField(source="product_id")
    currentStockDelta = serializers.IntegerField(source="current_stock_delta")
    reservedStockDelta = serializers.IntegerField(source="reserved_stock_delta")
    totalSalesDelta = serializers.IntegerField(source="total_sales_delta")
    currentStockAfter = serializers.IntegerField(source="current_stock_after")
    userId = serializers.IntegerField(source="user_id", allow_null=True)
    createdAt = serializers.DateTimeField(source="created_at")

    class Meta:
        model = InventoryLog
        fields = [
            "id", "productId", "kind", "currentStockDelta", "reservedStockDelta", "totalSalesDelta",
            "currentStockAfter", "reference", "reason", "userId", "createdAt",
        ]
