from django.urls import path
from . import views

urlpatterns = [
    # ============ Cart ============
    path("api/cart/", views.cart_detail, name="cart_detail"),
    path("api/cart/add/", views.cart_add, name="cart_add"),
    path("api/cart/update/", views.cart_update, name="cart_update"),
    path("api/cart/remove/", views.cart_remove, name="cart_remove"),
    path("api/cart/clear/", views.cart_clear, name="cart_clear"),

    # ============ Checkout wizard ============
    path("api/checkout/state/", views.checkout_state, name="checkout_state"),
    path("api/checkout/event/", views.checkout_event, name="checkout_event"),

    # ============ Delivery ============
    path("api/delivery/check/", views.delivery_check, name="delivery_check"),
    path("api/delivery/webhook/", views.delivery_webhook, name="delivery_webhook"),

    # ============ Coupons ============
    path("api/coupons/apply/", views.coupon_apply, name="coupon_apply"),
    path("api/coupons/remove/", views.coupon_remove, name="coupon_remove"),
    path("api/coupons/active/", views.coupon_active, name="coupon_active"),

    # ============ Payments ============
    path("api/payments/create-order/", views.payment_create_order, name="payment_create_order"),
    path("api/payments/verify/", views.payment_verify, name="payment_verify"),
    path("api/payments/webhook/", views.payment_webhook, name="payment_webhook"),

    # ============ Orders ============
    path("api/orders/create/", views.order_create, name="order_create"),
    path("api/orders/<str:order_number>/", views.order_detail, name="order_detail"),

    # ============ Admin order actions ============
    path("api/admin/orders/<str:order_number>/status/", views.admin_order_status, name="admin_order_status"),
    path("api/admin/orders/<str:order_number>/shipment/", views.admin_create_shipment, name="admin_create_shipment"),
]
