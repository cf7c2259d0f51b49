from django.urls import path

from . import views

urlpatterns = [
    path("orders/", views.create_order_view, name="order-create"),
    path("orders/<uuid:order_id>/", views.order_detail_view, name="order-detail"),
    path("orders/<uuid:order_id>/items/", views.order_items_view, name="order-items"),
    path("orders/<uuid:order_id>/status/", views.order_status_view, name="order-status"),
    path("orders/<uuid:order_id>/history/", views.order_history_view, name="order-history"),
    path("pools/<int:pool_id>/", views.pool_detail_view, name="pool-detail"),
    path("pools/<int:pool_id>/release/", views.pool_release_view, name="pool-release"),
    path("products/<int:product_id>/inventory-log/", views.inventory_log_view, name="inventory-log"),
]
