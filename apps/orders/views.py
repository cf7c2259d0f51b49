import hashlib
import json

from django.db import transaction
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import PermissionDenied, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from . import services
from .errors import NotFoundError
from .models import IdempotencyKey, Order, Pool, Product
from .serializers import (
    InventoryLogOut,
    OrderCreateIn,
    OrderHistoryOut,
    OrderItemsIn,
    OrderOut,
    PoolOut,
    StatusUpdateIn,
)
from .statuses import ELEVATED_ROLES, UserRole, get_available_transitions
from .workflow import OrderWorkflowService

STAFF_ROLES = ELEVATED_ROLES | {UserRole.SUPPLIER}


def get_workflow_service() -> OrderWorkflowService:
    return OrderWorkflowService()


def _order_payload(order: Order, user) -> dict:
    data = OrderOut(order).data
    data["availableTransitions"] = get_available_transitions(order.status, user.role)
    return data


def _get_visible_order(order_id, user) -> Order:
    order = Order.objects.filter(pk=order_id).prefetch_related("items").first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    if order.user_id != user.pk and user.role not in STAFF_ROLES:
        raise PermissionDenied("You cannot access this order")
    return order


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def create_order_view(request):
    ser = OrderCreateIn(data=request.data)
    ser.is_valid(raise_exception=True)
    data = ser.validated_data

    idem = request.headers.get("Idempotency-Key")
    body_hash = hashlib.sha256(json.dumps(request.data, sort_keys=True, default=str).encode()).hexdigest()

    if idem:
        with transaction.atomic():
            rec, created = IdempotencyKey.objects.select_for_update().get_or_create(
                key=idem, user=request.user,
                defaults={"request_hash": body_hash, "status_code": 0, "response_body": {}},
            )
            if not created and rec.request_hash == body_hash and rec.status_code:
                return Response(rec.response_body, status=rec.status_code)

            order = services.create_order(user=request.user, items=data["items"], draft=data["draft"])
            payload = _order_payload(order, request.user)
            rec.request_hash, rec.response_body, rec.status_code = (
                body_hash, json.loads(json.dumps(payload, default=str)), status.HTTP_201_CREATED,
            )
            rec.save(update_fields=["request_hash", "response_body", "status_code"])
    else:
        order = services.create_order(user=request.user, items=data["items"], draft=data["draft"])
        payload = _order_payload(order, request.user)

    headers = {"Location": f"/api/orders/{order.pk}/"}
    return Response(payload, status=status.HTTP_201_CREATED, headers=headers)


@api_view(["GET", "DELETE"])
@permission_classes([IsAuthenticated])
def order_detail_view(request, order_id):
    if request.method == "DELETE":
        services.delete_order(order_id=order_id, user=request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)

    order = _get_visible_order(order_id, request.user)
    return Response(_order_payload(order, request.user))


@api_view(["PUT"])
@permission_classes([IsAuthenticated])
def order_items_view(request, order_id):
    ser = OrderItemsIn(data=request.data)
    ser.is_valid(raise_exception=True)
    order = services.replace_items(order_id=order_id, user=request.user, items=ser.validated_data["items"])
    return Response(_order_payload(order, request.user))


@api_view(["PATCH"])
@permission_classes([IsAuthenticated])
def order_status_view(request, order_id):
    ser = StatusUpdateIn(data=request.data)
    ser.is_valid(raise_exception=True)

    # Ownership only; the status machine decides what the role may do.
    _get_visible_order(order_id, request.user)

    order = get_workflow_service().update_order_status(
        order_id,
        ser.validated_data["target_status"],
        request.user.pk,
        request.user.role,
        ser.validated_data.get("metadata") or {},
    )
    return Response(_order_payload(order, request.user))


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def order_history_view(request, order_id):
    order = _get_visible_order(order_id, request.user)
    return Response(OrderHistoryOut(order.history.all(), many=True).data)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def pool_detail_view(request, pool_id):
    pool = get_object_or_404(Pool, pk=pool_id)
    return Response(PoolOut(pool).data)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def pool_release_view(request, pool_id):
    released = get_workflow_service().release_pool(pool_id, request.user.pk, request.user.role)
    return Response({"poolId": pool_id, "released": [str(o.pk) for o in released]})


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def inventory_log_view(request, product_id):
    if request.user.role not in STAFF_ROLES:
        raise PermissionDenied("Only suppliers and admins can read stock history")
    product = get_object_or_404(Product, pk=product_id)
    try:
        limit = min(int(request.query_params.get("limit", 50)), 200)
    except ValueError:
        raise ValidationError({"limit": ["A valid integer is required."]})
    return Response(InventoryLogOut(product.inventory_logs.all()[:limit], many=True).data)
