# checkout/pricing.py
"""
The one place order money is computed.

Coupon preview and order creation both call ``price_order`` so the total a
shopper is shown and the total that is persisted can never diverge.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value):
    """Coerce to a 2-place Decimal; raises ValueError on garbage."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_minor_units(amount):
    """Rupees to paise for the payment gateway."""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class Pricing:
    subtotal: Decimal
    discount: Decimal
    shipping_charge: Decimal
    total: Decimal

    def to_dict(self):
        return {
            "subtotal": str(self.subtotal),
            "discount": str(self.discount),
            "shippingCharge": str(self.shipping_charge),
            "total": str(self.total),
        }


def compute_discount(coupon, subtotal):
    """
    Raw discount a coupon grants on ``subtotal``, never more than the subtotal.

    Percentage coupons take ``subtotal * value / 100`` capped at max_discount;
    flat coupons take their value.
    """
    subtotal = to_money(subtotal)
    if coupon is None or subtotal <= 0:
        return ZERO

    if coupon.discount_type == "percentage":
        discount = subtotal * Decimal(coupon.discount_value) / Decimal(100)
        if coupon.max_discount is not None:
            discount = min(discount, Decimal(coupon.max_discount))
    else:
        discount = Decimal(coupon.discount_value)

    discount = max(ZERO, discount)
    return min(to_money(discount), subtotal)


def price_order(subtotal, coupon=None, shipping_charge=ZERO):
    """total = subtotal - discount + shipping, with total >= 0."""
    subtotal = to_money(subtotal)
    shipping_charge = max(ZERO, to_money(shipping_charge))
    discount = compute_discount(coupon, subtotal)
    total = max(ZERO, subtotal - discount) + shipping_charge
    return Pricing(subtotal=subtotal, discount=discount, shipping_charge=shipping_charge, total=total)


def line_subtotal(items):
    """Sum of unit_price * quantity over priced line items."""
    return sum((to_money(item["unitPrice"]) * int(item["quantity"]) for item in items), ZERO)
