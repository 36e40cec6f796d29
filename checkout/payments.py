# checkout/payments.py
"""
Razorpay integration: gateway orders, payment signatures and webhooks.

A payment is only treated as captured after its signature has been verified
here; nothing downstream accepts an unverified payment reference.
"""
import hashlib
import hmac
import logging
import uuid
from dataclasses import dataclass

import requests
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from storefront.exceptions import ExternalServiceError, PaymentVerificationFailed, ValidationFailed

from .models import GatewayOrder, Order, OrphanPayment, StoreSettings
from .pricing import to_minor_units, to_money

logger = logging.getLogger(__name__)

PURPOSE_ONLINE = "ONLINE"
PURPOSE_COD_ADVANCE = "COD_ADVANCE"
PURPOSES = (PURPOSE_ONLINE, PURPOSE_COD_ADVANCE)


class RazorpayAPI:
    """Razorpay REST client using key/secret basic auth"""

    def __init__(self):
        self.base_url = (settings.RAZORPAY_BASE_URL or "").strip().rstrip("/")
        self.key_id = settings.RAZORPAY_KEY_ID
        self.key_secret = settings.RAZORPAY_KEY_SECRET
        if not self.key_id or not self.key_secret:
            raise ExternalServiceError("Payment gateway is not configured")

    def create_order(self, amount_minor, receipt, notes=None):
        """
        Create a gateway order.
        Returns (success, order_dict) or (False, error message)
        """
        payload = {
            "amount": amount_minor,
            "currency": settings.CURRENCY,
            "receipt": receipt,
            "notes": notes or {},
        }
        try:
            response = requests.post(
                f"{self.base_url}/orders",
                json=payload,
                auth=(self.key_id, self.key_secret),
                timeout=15,
            )
            data = response.json()
            if response.ok and data.get("id"):
                logger.info(f"Razorpay order created: {data['id']} for {amount_minor} paise")
                return True, data
            error = data.get("error", {}).get("description") or "Order creation failed"
            logger.error(f"Razorpay order creation failed: {data}")
            return False, error
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Razorpay order creation error: {str(e)}", exc_info=True)
            return False, str(e)


def _sign(secret, message):
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def create_gateway_order(purpose, amount=None):
    """
    Reserve a payment with the gateway before any payment UI is shown.

    ONLINE takes the authoritative order total; COD_ADVANCE ignores ``amount``
    and uses the configured advance. Raises before anything is charged.
    """
    if purpose not in PURPOSES:
        raise ValidationFailed(f"Unsupported payment purpose: {purpose}")

    if purpose == PURPOSE_COD_ADVANCE:
        amount = StoreSettings.get_settings().cod_advance
        if amount is None:
            raise ValidationFailed("COD advance payment is not enabled", code="cod_advance_disabled")

    try:
        amount = to_money(amount)
    except ValueError:
        raise ValidationFailed("Invalid amount")
    if amount <= 0:
        raise ValidationFailed("Invalid amount")

    amount_minor = to_minor_units(amount)
    receipt = f"rcpt_{uuid.uuid4().hex[:12]}"

    success, result = RazorpayAPI().create_order(amount_minor, receipt, notes={"purpose": purpose})
    if not success:
        raise ExternalServiceError("Unable to start payment. Please try again.", detail=result)

    gateway_order = GatewayOrder.objects.create(
        gateway_order_id=result["id"],
        purpose=purpose,
        amount_minor=amount_minor,
        currency=result.get("currency", settings.CURRENCY),
        receipt=receipt,
    )
    return gateway_order


def verify_payment_signature(order_id, payment_id, signature):
    """HMAC-SHA256 of ``order_id|payment_id`` with the key secret."""
    if not order_id or not payment_id or not signature:
        raise PaymentVerificationFailed("Payment details are missing")
    secret = settings.RAZORPAY_KEY_SECRET
    if not secret:
        raise ExternalServiceError("Payment gateway is not configured")

    expected = _sign(secret, f"{order_id}|{payment_id}".encode("utf-8"))
    if not hmac.compare_digest(expected.encode(), str(signature).encode()):
        logger.warning(f"Payment signature mismatch for {order_id} / {payment_id}")
        raise PaymentVerificationFailed("Payment verification failed")
    return True


@dataclass(frozen=True)
class VerifiedPayment:
    gateway_order: GatewayOrder
    payment_id: str
    signature: str

    @property
    def amount(self):
        return self.gateway_order.amount


def verify_payment(purpose, payment):
    """
    Check a client callback ``{orderId, paymentId, signature}`` and bind it to
    the gateway order this server created for ``purpose``.
    """
    payment = payment if isinstance(payment, dict) else {}
    order_id = payment.get("orderId") or payment.get("razorpay_order_id")
    payment_id = payment.get("paymentId") or payment.get("razorpay_payment_id")
    signature = payment.get("signature") or payment.get("razorpay_signature")

    verify_payment_signature(order_id, payment_id, signature)

    gateway_order = GatewayOrder.objects.filter(gateway_order_id=order_id, purpose=purpose).first()
    if gateway_order is None:
        logger.error(f"Verified payment {payment_id} references unknown {purpose} order {order_id}")
        raise PaymentVerificationFailed("Payment does not match any checkout")

    logger.info(f"Payment verified: {payment_id} for gateway order {order_id}")
    return VerifiedPayment(gateway_order=gateway_order, payment_id=payment_id, signature=signature)


def verify_webhook_signature(payload, signature):
    """Verify webhook signature using HMAC-SHA256 of the raw body"""
    secret = settings.RAZORPAY_WEBHOOK_SECRET
    if not secret or not signature:
        return False
    return hmac.compare_digest(_sign(secret, payload).encode(), signature.encode())


def record_orphan_payment(gateway_order_id, payment_id, amount_minor, reason, payload=None):
    orphan, created = OrphanPayment.objects.get_or_create(
        gateway_payment_id=payment_id,
        defaults={
            "gateway_order_id": gateway_order_id or "",
            "amount_minor": amount_minor or 0,
            "reason": reason,
            "payload": payload or {},
        },
    )
    if created:
        logger.error(f"Orphan payment recorded: {payment_id} (gateway order {gateway_order_id}): {reason}")
    return orphan


def handle_webhook_event(body):
    """
    Apply a verified webhook body. ``payment.captured`` marks the linked order
    paid and confirms it; replays are no-ops. A capture with no order is kept
    as an OrphanPayment for manual reconciliation.
    """
    event = body.get("event")
    entity = (body.get("payload") or {}).get("payment", {}).get("entity") or {}
    if not event or not entity:
        raise ValidationFailed("Invalid webhook payload")

    gateway_order_id = entity.get("order_id")
    payment_id = entity.get("id")
    logger.info(f"Razorpay webhook {event}: payment {payment_id}, order {gateway_order_id}")

    if event != "payment.captured" or entity.get("status") != "captured":
        return {"received": True}

    with transaction.atomic():
        order = Order.objects.select_for_update().filter(gateway_order_id=gateway_order_id).first()
        if order is None:
            record_orphan_payment(
                gateway_order_id,
                payment_id,
                entity.get("amount"),
                "Payment captured but no order exists for this gateway order",
                entity,
            )
            return {"received": True, "orphan": True}

        needs_payment = order.payment_method == "ONLINE" and order.payment_status != "PAID"
        if not needs_payment and order.order_status != "CREATED":
            logger.info(f"Webhook already applied to {order.order_number}")
            return {"received": True, "orderNumber": order.order_number}

        fields = ["updated_at"]
        if needs_payment:
            order.payment_status = "PAID"
            order.gateway_payment_id = order.gateway_payment_id or payment_id
            order.paid_at = order.paid_at or timezone.now()
            fields += ["payment_status", "gateway_payment_id", "paid_at"]
        if order.order_status == "CREATED":
            order.order_status = "CONFIRMED"
            fields.append("order_status")
        order.save(update_fields=fields)

    logger.info(f"Order {order.order_number} marked {order.payment_status}/{order.order_status} by webhook")
    return {"received": True, "orderNumber": order.order_number}
