# checkout/coupons.py
import logging
from dataclasses import dataclass
from decimal import Decimal

from django.db.models import F, Q
from django.utils import timezone

from storefront.exceptions import CouponRejected

from .models import Coupon, Order
from .pricing import price_order, to_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CouponResult:
    code: str
    discount_amount: Decimal
    final_total: Decimal

    def to_dict(self):
        return {
            "success": True,
            "code": self.code,
            "discountAmount": str(self.discount_amount),
            "finalTotal": str(self.final_total),
        }


def _has_orders(user):
    return Order.objects.filter(user=user).exclude(order_status="CANCELLED").exists()


def get_valid_coupon(code, subtotal, user=None, today=None):
    """
    Look up ``code`` and run the checks in order: exists and active, not
    expired, minimum order, first-order eligibility, usage limit.
    """
    code = code.strip() if isinstance(code, str) else ""
    if not code:
        raise CouponRejected("Coupon code is required")

    subtotal = to_money(subtotal)
    today = today or timezone.localdate()

    coupon = Coupon.objects.filter(code__iexact=code).first()
    if coupon is None or not coupon.is_active:
        raise CouponRejected("Invalid or inactive coupon", code="coupon_not_found", status=404)

    if coupon.expiry_date < today:
        raise CouponRejected("This coupon has expired", code="coupon_expired")

    if coupon.min_order_amount is not None and subtotal < coupon.min_order_amount:
        raise CouponRejected(
            f"Minimum order amount of ₹{coupon.min_order_amount} required for this coupon",
            code="coupon_min_order",
            minOrderAmount=str(coupon.min_order_amount),
        )

    if coupon.is_first_order_coupon:
        if user is None or not user.is_authenticated:
            raise CouponRejected("Sign in to use this first-order offer", code="coupon_first_order")
        if _has_orders(user):
            raise CouponRejected("This coupon is valid on your first order only", code="coupon_first_order")

    if coupon.usage_limit is not None and coupon.times_redeemed >= coupon.usage_limit:
        raise CouponRejected("This coupon has reached its usage limit", code="coupon_exhausted")

    return coupon


def apply_coupon(code, subtotal, user=None):
    """Preview a coupon against a cart subtotal; server numbers are final."""
    coupon = get_valid_coupon(code, subtotal, user=user)
    pricing = price_order(subtotal, coupon)
    logger.info(f"Coupon {coupon.code} previewed: subtotal {pricing.subtotal}, discount {pricing.discount}")
    return CouponResult(code=coupon.code, discount_amount=pricing.discount, final_total=pricing.total)


def active_coupons(user=None, today=None):
    """Coupons the visitor could select right now."""
    today = today or timezone.localdate()
    coupons = Coupon.objects.filter(is_active=True, expiry_date__gte=today).filter(
        Q(usage_limit__isnull=True) | Q(times_redeemed__lt=F("usage_limit"))
    )
    if user is None or not user.is_authenticated or _has_orders(user):
        coupons = coupons.filter(is_first_order_coupon=False)
    return list(coupons.order_by("expiry_date", "code"))


def redeem_coupon(coupon):
    """
    Count one redemption. The conditional UPDATE is the race guard: two
    concurrent orders cannot both take the last slot of a limited coupon.
    Call inside the order transaction so a failed order releases the slot.
    """
    updated = (
        Coupon.objects.filter(pk=coupon.pk, is_active=True)
        .filter(Q(usage_limit__isnull=True) | Q(times_redeemed__lt=F("usage_limit")))
        .update(times_redeemed=F("times_redeemed") + 1)
    )
    if not updated:
        raise CouponRejected("This coupon has reached its usage limit", code="coupon_exhausted")
    logger.info(f"Coupon {coupon.code} redeemed")
