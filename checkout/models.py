# checkout/models.py
from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models, transaction
from django.db.models import F, Q


class Coupon(models.Model):
    DISCOUNT_TYPE_CHOICES = [
        ("percentage", "Percentage"),
        ("flat", "Flat"),
    ]

    # Stored upper-case; lookups go through code__iexact
    code = models.CharField(max_length=50, unique=True)
    discount_type = models.CharField(max_length=20, choices=DISCOUNT_TYPE_CHOICES, default="percentage")
    discount_value = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(0)])
    min_order_amount = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    max_discount = models.DecimalField(max_digits=10, decimal_places=2, blank=True, null=True)
    # Valid through the end of this day
    expiry_date = models.DateField()
    is_active = models.BooleanField(default=True, db_index=True)
    is_first_order_coupon = models.BooleanField(default=False)
    usage_limit = models.PositiveIntegerField(blank=True, null=True)
    times_redeemed = models.PositiveIntegerField(default=0)
    description = models.CharField(max_length=255, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=~Q(discount_type="percentage") | Q(discount_value__lte=100),
                name="coupon_percentage_at_most_100",
            ),
        ]

    def save(self, *args, **kwargs):
        self.code = (self.code or "").strip().upper()
        super().save(*args, **kwargs)

    def to_dict(self):
        return {
            "code": self.code,
            "discountType": self.discount_type,
            "discountValue": str(self.discount_value),
            "minOrderAmount": str(self.min_order_amount) if self.min_order_amount is not None else None,
            "maxDiscount": str(self.max_discount) if self.max_discount is not None else None,
            "expiryDate": self.expiry_date.isoformat(),
            "isFirstOrderCoupon": self.is_first_order_coupon,
            "description": self.description,
        }

    def __str__(self):
        return self.code


class StoreSettings(models.Model):
    """Single admin-editable row holding runtime checkout configuration."""

    cod_advance_enabled = models.BooleanField(default=True)
    cod_advance_amount = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal("100.00"), validators=[MinValueValidator(0)]
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "store settings"
        verbose_name_plural = "store settings"

    def save(self, *args, **kwargs):
        self.pk = 1
        super().save(*args, **kwargs)

    @classmethod
    def get_settings(cls):
        obj, _ = cls.objects.get_or_create(pk=1)
        return obj

    @property
    def cod_advance(self):
        """Advance required before a COD order, or None when disabled."""
        if self.cod_advance_enabled and self.cod_advance_amount > 0:
            return self.cod_advance_amount
        return None

    def __str__(self):
        return "Store settings"


class OrderCounter(models.Model):
    name = models.CharField(max_length=50, unique=True)
    value = models.PositiveIntegerField(default=0)

    PREFIX = "SS"

    @classmethod
    def next_order_number(cls):
        """Allocate the next SS0001-style number; must run inside the order transaction."""
        with transaction.atomic():
            counter, _ = cls.objects.select_for_update().get_or_create(name="order")
            cls.objects.filter(pk=counter.pk).update(value=F("value") + 1)
            counter.refresh_from_db(fields=["value"])
        return f"{cls.PREFIX}{counter.value:04d}"

    def __str__(self):
        return f"{self.name}={self.value}"


class Order(models.Model):
    PAYMENT_METHOD_CHOICES = [
        ("ONLINE", "Online"),
        ("COD", "Cash on Delivery"),
    ]
    PAYMENT_STATUS_CHOICES = [
        ("PENDING", "Pending"),
        ("PARTIALLY_PAID", "Partially Paid"),
        ("PAID", "Paid"),
    ]
    ORDER_STATUS_CHOICES = [
        ("CREATED", "Created"),
        ("CONFIRMED", "Confirmed"),
        ("SHIPPED", "Shipped"),
        ("DELIVERED", "Delivered"),
        ("CANCELLED", "Cancelled"),
    ]

    order_number = models.CharField(max_length=20, unique=True)

    # Owner: exactly one of these
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, related_name="orders", on_delete=models.PROTECT, blank=True, null=True
    )
    guest_user = models.ForeignKey(
        "accounts.GuestUser", related_name="orders", on_delete=models.PROTECT, blank=True, null=True
    )
    email = models.EmailField(blank=True, default="")

    # Snapshots taken at order time
    items = models.JSONField(default=list)
    shipping_address = models.JSONField(default=dict)

    # Pricing
    subtotal = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    discount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    shipping_charge = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    coupon_code = models.CharField(max_length=50, blank=True, default="")

    # Payment
    payment_method = models.CharField(max_length=10, choices=PAYMENT_METHOD_CHOICES, default="ONLINE")
    payment_status = models.CharField(max_length=20, choices=PAYMENT_STATUS_CHOICES, default="PENDING", db_index=True)
    advance_paid = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    remaining_cod = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    gateway_order_id = models.CharField(max_length=100, blank=True, null=True, unique=True)
    gateway_payment_id = models.CharField(max_length=100, blank=True, null=True, unique=True)
    gateway_signature = models.CharField(max_length=255, blank=True, default="")
    paid_at = models.DateTimeField(blank=True, null=True)

    order_status = models.CharField(max_length=20, choices=ORDER_STATUS_CHOICES, default="CREATED", db_index=True)
    order_message = models.TextField(blank=True, default="")

    # Shipping partner
    shipment_created = models.BooleanField(default=False, db_index=True)
    waybill = models.CharField(max_length=100, blank=True, null=True, unique=True)
    courier_name = models.CharField(max_length=200, blank=True, default="")
    delivery_status = models.CharField(max_length=100, blank=True, default="")
    tracking_url = models.URLField(blank=True, default="")
    shipment_error = models.TextField(blank=True, default="")
    tracking_data = models.JSONField(default=dict, blank=True)

    customer_notified = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["order_status", "created_at"], name="order_status_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(total__gte=0), name="order_total_not_negative"),
        ]

    @property
    def customer_email(self):
        if self.email:
            return self.email
        if self.user_id:
            return self.user.email
        return self.guest_user.email if self.guest_user_id else ""

    def to_dict(self):
        return {
            "orderNumber": self.order_number,
            "items": self.items,
            "shippingAddress": self.shipping_address,
            "subtotal": str(self.subtotal),
            "discount": str(self.discount),
            "shippingCharge": str(self.shipping_charge),
            "total": str(self.total),
            "couponCode": self.coupon_code or None,
            "paymentMethod": self.payment_method,
            "paymentStatus": self.payment_status,
            "orderStatus": self.order_status,
            "advancePaid": str(self.advance_paid),
            "remainingCod": str(self.remaining_cod),
            "waybill": self.waybill,
            "courierName": self.courier_name,
            "deliveryStatus": self.delivery_status,
            "trackingUrl": self.tracking_url,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __str__(self):
        return f"Order {self.order_number}"


class GatewayOrder(models.Model):
    """Payment-provider reservation created before the payment popup opens."""

    PURPOSE_CHOICES = [
        ("ONLINE", "Online payment"),
        ("COD_ADVANCE", "COD advance"),
    ]
    STATUS_CHOICES = [
        ("CREATED", "Created"),
        ("CONSUMED", "Consumed"),
    ]

    gateway_order_id = models.CharField(max_length=100, unique=True)
    purpose = models.CharField(max_length=20, choices=PURPOSE_CHOICES)
    amount_minor = models.PositiveIntegerField()
    currency = models.CharField(max_length=10, default="INR")
    receipt = models.CharField(max_length=64, blank=True, default="")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="CREATED", db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    @property
    def amount(self):
        return (Decimal(self.amount_minor) / 100).quantize(Decimal("0.01"))

    def __str__(self):
        return f"{self.gateway_order_id} ({self.purpose})"


class OrphanPayment(models.Model):
    """A captured payment that has no confirmed order yet."""

    gateway_order_id = models.CharField(max_length=100, db_index=True)
    gateway_payment_id = models.CharField(max_length=100, unique=True)
    amount_minor = models.PositiveIntegerField(default=0)
    reason = models.TextField(blank=True, default="")
    payload = models.JSONField(default=dict, blank=True)
    processed = models.BooleanField(default=False, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"Orphan {self.gateway_payment_id}"
