from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    # ============ CATALOG ============
    path("", include("catalog.urls")),

    # ============ AUTH, OTP & GUEST IDENTITY ============
    path("", include("accounts.urls")),

    # ============ CART, CHECKOUT, PAYMENTS, ORDERS ============
    # Mounted at root so URLs are exactly /api/cart/..., /api/orders/...
    path("", include("checkout.urls")),

    # ============ ADMIN ============
    path("admin/", admin.site.urls),
]
