# checkout/orders.py
"""
Order Writer.

Client totals are never trusted: items are re-priced from the catalog, the
coupon is re-validated and redeemed, and money goes through ``price_order``
inside the same transaction that writes the order.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from catalog.models import Product
from catalog.stock import check_stock, reduce_stock_for_lines
from storefront.exceptions import DuplicateOrder, PaymentNotConfirmed, ValidationFailed
from storefront.validators import address_errors, normalize_address

from .coupons import get_valid_coupon, redeem_coupon
from .models import GatewayOrder, Order, OrderCounter, OrphanPayment, StoreSettings
from .notifications import notify_order_placed
from .payments import PURPOSE_COD_ADVANCE, PURPOSE_ONLINE, record_orphan_payment
from .pricing import ZERO, Pricing, line_subtotal, price_order, to_minor_units, to_money

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("ONLINE", "COD")
MAX_LINE_QUANTITY = 20


@dataclass(frozen=True)
class Quote:
    lines: list
    coupon: Optional[object]
    pricing: Pricing


def reprice_items(items):
    """
    Validate cart lines against the catalog and return order snapshots with
    catalog prices. Client-side prices are ignored.
    """
    if not isinstance(items, list) or not items:
        raise ValidationFailed("Cart is empty")

    lines = []
    for raw in items:
        raw = raw if isinstance(raw, dict) else {}
        product_id = raw.get("productId") or raw.get("id")
        try:
            quantity = int(raw.get("quantity", 1))
            product = Product.objects.get(pk=int(product_id), is_active=True)
        except (TypeError, ValueError):
            raise ValidationFailed("Invalid cart item", fields={"items": "invalid"})
        except Product.DoesNotExist:
            raise ValidationFailed("Some items in your cart are no longer available", code="item_unavailable")

        if not 1 <= quantity <= MAX_LINE_QUANTITY:
            raise ValidationFailed(f"Invalid quantity for {product.name}", fields={"quantity": "invalid"})

        size = str(raw.get("size") or "").strip()
        if product.sizes and size not in product.sizes:
            raise ValidationFailed(f"Select an available size for {product.name}", fields={"size": "invalid"})
        check_stock(product, size, quantity)

        unit_price = to_money(product.price)
        lines.append({
            "productId": str(product.pk),
            "name": product.name,
            "image": product.image_url,
            "size": size,
            "color": str(raw.get("color") or "").strip(),
            "unitPrice": str(unit_price),
            "quantity": quantity,
            "lineTotal": str(unit_price * quantity),
        })
    return lines


def shipping_charge():
    return to_money(settings.DELIVERY_FLAT_CHARGE)


def quote_order(items, coupon_code=None, user=None):
    """Authoritative pricing of a submitted cart; does not redeem the coupon."""
    lines = reprice_items(items)
    subtotal = line_subtotal(lines)
    coupon = get_valid_coupon(coupon_code, subtotal, user=user) if coupon_code else None
    return Quote(lines=lines, coupon=coupon, pricing=price_order(subtotal, coupon, shipping_charge()))


def _existing_order(payment):
    return Order.objects.filter(gateway_payment_id=payment.payment_id).first() or \
        Order.objects.filter(gateway_order_id=payment.gateway_order.gateway_order_id).first()


def _raise_if_duplicate(payment):
    existing = _existing_order(payment)
    if existing is not None:
        logger.warning(f"Duplicate submission for payment {payment.payment_id}: order {existing.order_number}")
        raise DuplicateOrder(
            "An order already exists for this payment",
            orderNumber=existing.order_number,
        )


def _consume(gateway_order):
    consumed = GatewayOrder.objects.filter(pk=gateway_order.pk, status="CREATED").update(status="CONSUMED")
    if not consumed:
        raise ValidationFailed("This payment has already been used", code="payment_already_used")


def _write_order(payload, identity, payment, advance_payment):
    payment_method = payload.get("paymentMethod", "ONLINE")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationFailed(f"Unsupported payment method: {payment_method}")

    address = normalize_address(payload.get("shippingAddress"))
    errors = address_errors(address)
    if errors:
        raise ValidationFailed("Invalid shipping address", fields=errors)

    lines = reprice_items(payload.get("items"))
    subtotal = line_subtotal(lines)

    coupon = None
    coupon_code = str(payload.get("couponCode") or "").strip()
    if coupon_code:
        coupon = get_valid_coupon(coupon_code, subtotal, user=identity.user)
        redeem_coupon(coupon)

    pricing = price_order(subtotal, coupon, shipping_charge())

    fields = {
        "payment_method": payment_method,
        "payment_status": "PENDING",
        "advance_paid": ZERO,
        "remaining_cod": ZERO,
    }

    if payment_method == "ONLINE":
        if payment is None or payment.gateway_order.purpose != PURPOSE_ONLINE:
            raise ValidationFailed("Online payment must be completed first", code="payment_required")
        if payment.gateway_order.amount_minor != to_minor_units(pricing.total):
            raise ValidationFailed(
                f"Paid amount ₹{payment.amount} does not match order total ₹{pricing.total}",
                code="amount_mismatch",
            )
        _consume(payment.gateway_order)
        fields.update(
            payment_status="PAID",
            gateway_order_id=payment.gateway_order.gateway_order_id,
            gateway_payment_id=payment.payment_id,
            gateway_signature=payment.signature,
            paid_at=timezone.now(),
        )
    else:
        required_advance = StoreSettings.get_settings().cod_advance
        if required_advance is not None and advance_payment is None:
            raise ValidationFailed("COD advance payment is required", code="cod_advance_required")
        if advance_payment is not None:
            if advance_payment.gateway_order.purpose != PURPOSE_COD_ADVANCE:
                raise ValidationFailed("Invalid COD advance payment", code="payment_required")
            _consume(advance_payment.gateway_order)
            advance = min(advance_payment.amount, pricing.total)
            fields.update(
                payment_status="PARTIALLY_PAID",
                advance_paid=advance,
                gateway_order_id=advance_payment.gateway_order.gateway_order_id,
                gateway_payment_id=advance_payment.payment_id,
                gateway_signature=advance_payment.signature,
                paid_at=timezone.now(),
            )
        fields["remaining_cod"] = pricing.total - fields["advance_paid"]

    user = identity.user
    order = Order.objects.create(
        order_number=OrderCounter.next_order_number(),
        user=user,
        guest_user=None if user is not None else identity.guest,
        email=str(payload.get("email") or identity.email or "").strip().lower(),
        items=lines,
        shipping_address=address,
        subtotal=pricing.subtotal,
        discount=pricing.discount,
        shipping_charge=pricing.shipping_charge,
        total=pricing.total,
        coupon_code=coupon.code if coupon else "",
        order_status="CREATED",
        order_message=str(payload.get("orderMessage") or "").strip()[:1000],
        **fields,
    )
    reduce_stock_for_lines(lines)

    reference = payment or advance_payment
    if reference is not None:
        OrphanPayment.objects.filter(gateway_payment_id=reference.payment_id).update(processed=True)

    transaction.on_commit(lambda: notify_order_placed(order))
    return order


def create_order(payload, identity, payment=None, advance_payment=None):
    """
    Persist a checkout as an Order.

    ``payment`` / ``advance_payment`` are VerifiedPayment instances; callers
    verify signatures before getting here. Re-submitting a payment that
    already has an order raises DuplicateOrder with that order's number. Any
    other failure after money was taken raises PaymentNotConfirmed and keeps
    the payment as an OrphanPayment.
    """
    reference = payment or advance_payment
    if reference is not None:
        _raise_if_duplicate(reference)

    try:
        with transaction.atomic():
            order = _write_order(payload, identity, payment, advance_payment)
    except DuplicateOrder:
        raise
    except Exception as e:
        if reference is None:
            raise
        # A concurrent submission of the same payment may have committed first
        existing = _existing_order(reference)
        if existing is not None:
            logger.warning(f"Duplicate submission for payment {reference.payment_id}: order {existing.order_number}")
            raise DuplicateOrder(
                "An order already exists for this payment",
                orderNumber=existing.order_number,
            ) from e
        logger.error(f"Order write failed after payment {reference.payment_id}: {e}", exc_info=True)
        record_orphan_payment(
            reference.gateway_order.gateway_order_id,
            reference.payment_id,
            reference.gateway_order.amount_minor,
            f"Order not confirmed: {e}",
            {"items": payload.get("items"), "paymentMethod": payload.get("paymentMethod")},
        )
        raise PaymentNotConfirmed(
            "Your payment was received but the order could not be confirmed. "
            "Please contact support with your payment reference.",
            paymentReference=reference.payment_id,
        ) from e

    logger.info(
        f"Order {order.order_number} created: {order.payment_method}/{order.payment_status}, "
        f"total {order.total}, gateway order {order.gateway_order_id}, payment {order.gateway_payment_id}"
    )
    return order


def get_order_for_request(request, order_number):
    """Owner, staff, or the session that placed it may read an order."""
    order = Order.objects.filter(order_number=order_number).first()
    if order is None:
        return None
    user = request.user
    if user.is_authenticated and (user.is_staff or order.user_id == user.pk):
        return order
    if order_number in request.session.get("placed_orders", []):
        return order
    return None


def remember_order(session, order):
    placed = list(session.get("placed_orders", []))
    if order.order_number not in placed:
        placed.append(order.order_number)
    session["placed_orders"] = placed[-20:]
    session.modified = True
