from django.contrib import admin
from .models import CustomerProfile, GuestUser, OTPRecord


@admin.register(GuestUser)
class GuestUserAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "email", "phone", "created_at", "updated_at")
    search_fields = ("name", "email", "phone", "guest_session_id")
    readonly_fields = ("guest_session_id", "created_at", "updated_at")


@admin.register(CustomerProfile)
class CustomerProfileAdmin(admin.ModelAdmin):
    list_display = ("user", "phone", "email_verified", "phone_verified")
    search_fields = ("user__email", "phone")
    list_select_related = ("user",)


@admin.register(OTPRecord)
class OTPRecordAdmin(admin.ModelAdmin):
    # Hash is never shown
    list_display = ("identifier", "channel", "attempts", "verified", "expires_at", "ip_address", "created_at")
    list_filter = ("channel", "verified")
    search_fields = ("identifier", "ip_address")
    exclude = ("otp_hash",)
    readonly_fields = ("identifier", "channel", "expires_at", "attempts", "ip_address", "last_sent_at", "created_at")
