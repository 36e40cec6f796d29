from django.urls import path
from . import views

urlpatterns = [
    # ============ Verification Gate ============
    path("api/auth/otp/send/", views.send_otp, name="send_otp"),
    path("api/auth/otp/verify/", views.verify_otp, name="verify_otp"),

    # ============ Accounts ============
    path("api/auth/register/", views.register, name="register"),
    path("api/auth/me/", views.me, name="me"),

    # ============ Guest identity ============
    path("api/checkout/guest/", views.guest_checkout, name="guest_checkout"),
]
