from django.contrib import admin, messages

from storefront.exceptions import StoreError

from .models import Coupon, GatewayOrder, Order, OrphanPayment, StoreSettings
from .shipments import create_shipment, update_order_status


@admin.register(Coupon)
class CouponAdmin(admin.ModelAdmin):
    list_display = (
        "code",
        "discount_type",
        "discount_value",
        "min_order_amount",
        "max_discount",
        "expiry_date",
        "is_active",
        "is_first_order_coupon",
        "times_redeemed",
        "usage_limit",
    )
    list_filter = ("is_active", "discount_type", "is_first_order_coupon")
    search_fields = ("code", "description")
    readonly_fields = ("times_redeemed", "created_at", "updated_at")
    actions = ["activate", "deactivate"]

    @admin.action(description="Activate selected coupons")
    def activate(self, request, queryset):
        updated = queryset.update(is_active=True)
        self.message_user(request, f"{updated} coupon(s) activated")

    @admin.action(description="Deactivate selected coupons")
    def deactivate(self, request, queryset):
        updated = queryset.update(is_active=False)
        self.message_user(request, f"{updated} coupon(s) deactivated")


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        "order_number",
        "customer_email",
        "payment_method",
        "payment_status",
        "order_status",
        "waybill",
        "delivery_status",
        "total",
        "created_at",
    )
    list_filter = ("order_status", "payment_status", "payment_method", "created_at")
    search_fields = (
        "order_number",
        "email",
        "gateway_order_id",
        "gateway_payment_id",
        "waybill",
    )

    # Snapshots and gateway references are the audit trail
    readonly_fields = (
        "order_number",
        "user",
        "guest_user",
        "items",
        "shipping_address",
        "subtotal",
        "discount",
        "shipping_charge",
        "total",
        "coupon_code",
        "payment_method",
        "payment_status",
        "order_status",
        "advance_paid",
        "remaining_cod",
        "gateway_order_id",
        "gateway_payment_id",
        "gateway_signature",
        "paid_at",
        "shipment_created",
        "waybill",
        "delivery_status",
        "courier_name",
        "tracking_url",
        "shipment_error",
        "tracking_data",
        "created_at",
        "updated_at",
    )
    actions = ["mark_confirmed", "mark_cancelled", "mark_delivered", "create_shipments"]

    fieldsets = (
        ("Customer", {
            "fields": ("order_number", "user", "guest_user", "email", "shipping_address", "order_message")
        }),
        ("Items & Pricing", {
            "fields": ("items", "subtotal", "discount", "coupon_code", "shipping_charge", "total")
        }),
        ("Payment", {
            "fields": (
                "payment_method",
                "payment_status",
                "advance_paid",
                "remaining_cod",
                "gateway_order_id",
                "gateway_payment_id",
                "gateway_signature",
                "paid_at",
            )
        }),
        ("Order Status", {
            "fields": ("order_status",)
        }),
        ("Shipment", {
            "fields": (
                "shipment_created",
                "waybill",
                "courier_name",
                "delivery_status",
                "tracking_url",
                "shipment_error",
            ),
            "classes": ("collapse",)
        }),
        ("System Metadata", {
            "fields": ("tracking_data", "created_at", "updated_at"),
            "classes": ("collapse",)
        }),
    )

    def has_delete_permission(self, request, obj=None):
        return False

    def _move_to(self, request, queryset, target):
        for order in queryset:
            try:
                update_order_status(order.order_number, target)
            except StoreError as e:
                self.message_user(request, f"{order.order_number}: {e.message}", level=messages.ERROR)
            else:
                self.message_user(request, f"{order.order_number}: {target}")

    @admin.action(description="Mark selected orders as confirmed")
    def mark_confirmed(self, request, queryset):
        self._move_to(request, queryset, "CONFIRMED")

    @admin.action(description="Cancel selected orders")
    def mark_cancelled(self, request, queryset):
        self._move_to(request, queryset, "CANCELLED")

    @admin.action(description="Mark selected orders as delivered")
    def mark_delivered(self, request, queryset):
        self._move_to(request, queryset, "DELIVERED")

    @admin.action(description="Create shipment for selected confirmed orders")
    def create_shipments(self, request, queryset):
        for order in queryset:
            try:
                create_shipment(order.order_number)
            except StoreError as e:
                self.message_user(request, f"{order.order_number}: {e.message}", level=messages.ERROR)
            else:
                self.message_user(request, f"{order.order_number}: shipment created")

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("user", "guest_user")


@admin.register(GatewayOrder)
class GatewayOrderAdmin(admin.ModelAdmin):
    list_display = ("gateway_order_id", "purpose", "amount_minor", "currency", "status", "created_at")
    list_filter = ("purpose", "status")
    search_fields = ("gateway_order_id", "receipt")
    readonly_fields = ("gateway_order_id", "purpose", "amount_minor", "currency", "receipt", "created_at")


@admin.register(OrphanPayment)
class OrphanPaymentAdmin(admin.ModelAdmin):
    list_display = ("gateway_payment_id", "gateway_order_id", "amount_minor", "processed", "created_at")
    list_filter = ("processed",)
    search_fields = ("gateway_payment_id", "gateway_order_id")
    readonly_fields = ("gateway_order_id", "gateway_payment_id", "amount_minor", "reason", "payload", "created_at")


@admin.register(StoreSettings)
class StoreSettingsAdmin(admin.ModelAdmin):
    list_display = ("__str__", "cod_advance_enabled", "cod_advance_amount", "updated_at")

    def has_add_permission(self, request):
        return not StoreSettings.objects.exists()

    def has_delete_permission(self, request, obj=None):
        return False
