import json
from decimal import Decimal
from unittest import mock

import requests
from django.test import TestCase, override_settings

from checkout.models import GatewayOrder, Order, OrphanPayment, StoreSettings
from checkout.payments import (
    create_gateway_order,
    handle_webhook_event,
    verify_payment,
    verify_payment_signature,
    verify_webhook_signature,
)
from storefront.exceptions import ExternalServiceError, PaymentVerificationFailed, ValidationFailed

from .helpers import (
    GATEWAY_SETTINGS,
    KEY_ID,
    KEY_SECRET,
    make_gateway_order,
    mock_response,
    sign,
    signed_payment,
    webhook_signature,
)


def captured(order_id="order_test_1", payment_id="pay_test_1", event="payment.captured", status="captured"):
    return {
        "event": event,
        "payload": {"payment": {"entity": {
            "id": payment_id,
            "order_id": order_id,
            "amount": 170000,
            "status": status,
        }}},
    }


@override_settings(**GATEWAY_SETTINGS)
class GatewayOrderTests(TestCase):

    @mock.patch("checkout.payments.requests.post")
    def test_online_order_reserves_total_in_paise(self, mock_post):
        mock_post.return_value = mock_response({"id": "order_abc", "currency": "INR", "amount": 170000})

        gateway_order = create_gateway_order("ONLINE", Decimal("1700.00"))

        self.assertEqual(gateway_order.gateway_order_id, "order_abc")
        self.assertEqual(gateway_order.amount_minor, 170000)
        self.assertEqual(gateway_order.amount, Decimal("1700.00"))
        self.assertEqual(mock_post.call_args.args[0], "https://api.razorpay.test/v1/orders")
        self.assertEqual(mock_post.call_args.kwargs["auth"], (KEY_ID, KEY_SECRET))
        self.assertEqual(mock_post.call_args.kwargs["json"]["amount"], 170000)
        self.assertTrue(mock_post.call_args.kwargs["json"]["receipt"].startswith("rcpt_"))

    @mock.patch("checkout.payments.requests.post")
    def test_cod_advance_amount_comes_from_store_settings(self, mock_post):
        mock_post.return_value = mock_response({"id": "order_adv"})

        gateway_order = create_gateway_order("COD_ADVANCE", amount="1")

        self.assertEqual(gateway_order.purpose, "COD_ADVANCE")
        self.assertEqual(gateway_order.amount_minor, 10000)

    @mock.patch("checkout.payments.requests.post")
    def test_disabled_cod_advance(self, mock_post):
        store = StoreSettings.get_settings()
        store.cod_advance_enabled = False
        store.save()

        with self.assertRaises(ValidationFailed) as ctx:
            create_gateway_order("COD_ADVANCE")
        self.assertEqual(ctx.exception.code, "cod_advance_disabled")
        mock_post.assert_not_called()

    @mock.patch("checkout.payments.requests.post")
    def test_gateway_failure_creates_nothing(self, mock_post):
        mock_post.return_value = mock_response({"error": {"description": "Authentication failed"}}, status=401)

        with self.assertRaises(ExternalServiceError):
            create_gateway_order("ONLINE", "1700")
        self.assertFalse(GatewayOrder.objects.exists())

    @mock.patch("checkout.payments.requests.post")
    def test_network_failure(self, mock_post):
        mock_post.side_effect = requests.exceptions.ConnectionError("refused")
        with self.assertRaises(ExternalServiceError):
            create_gateway_order("ONLINE", "1700")

    @mock.patch("checkout.payments.requests.post")
    def test_invalid_requests(self, mock_post):
        for purpose, amount in (("ONLINE", "0"), ("ONLINE", None), ("ONLINE", "-5"), ("REFUND", "10")):
            with self.assertRaises(ValidationFailed):
                create_gateway_order(purpose, amount)
        mock_post.assert_not_called()

    @override_settings(RAZORPAY_KEY_SECRET=None)
    def test_unconfigured_gateway(self):
        with self.assertRaises(ExternalServiceError):
            create_gateway_order("ONLINE", "1700")


@override_settings(**GATEWAY_SETTINGS)
class SignatureTests(TestCase):

    def test_valid_signature(self):
        self.assertTrue(verify_payment_signature("order_1", "pay_1", sign("order_1", "pay_1")))

    def test_tampered_signature(self):
        for args in (
            ("order_1", "pay_2", sign("order_1", "pay_1")),
            ("order_1", "pay_1", sign("order_1", "pay_1", secret="other")),
            ("order_1", "pay_1", "ñ-not-hex"),
            ("order_1", "pay_1", ""),
        ):
            with self.assertRaises(PaymentVerificationFailed):
                verify_payment_signature(*args)

    def test_verify_payment_binds_to_gateway_order(self):
        gateway_order = make_gateway_order("order_test_1")

        payment = verify_payment("ONLINE", signed_payment("order_test_1"))

        self.assertEqual(payment.gateway_order, gateway_order)
        self.assertEqual(payment.payment_id, "pay_test_1")
        self.assertEqual(payment.amount, Decimal("1700.00"))

    def test_gateway_style_keys_are_accepted(self):
        make_gateway_order("order_test_1")
        payment = verify_payment("ONLINE", {
            "razorpay_order_id": "order_test_1",
            "razorpay_payment_id": "pay_9",
            "razorpay_signature": sign("order_test_1", "pay_9"),
        })
        self.assertEqual(payment.payment_id, "pay_9")

    def test_unknown_or_wrong_purpose_gateway_order(self):
        make_gateway_order("order_test_1", purpose="COD_ADVANCE", amount_minor=10000)

        with self.assertRaises(PaymentVerificationFailed):
            verify_payment("ONLINE", signed_payment("order_test_1"))
        with self.assertRaises(PaymentVerificationFailed):
            verify_payment("ONLINE", signed_payment("order_missing"))
        with self.assertRaises(PaymentVerificationFailed):
            verify_payment("ONLINE", None)

    def test_webhook_signature(self):
        body = json.dumps(captured()).encode()
        self.assertTrue(verify_webhook_signature(body, webhook_signature(body)))
        self.assertFalse(verify_webhook_signature(body + b" ", webhook_signature(body)))
        self.assertFalse(verify_webhook_signature(body, ""))

    @override_settings(RAZORPAY_WEBHOOK_SECRET=None)
    def test_webhook_without_secret_is_rejected(self):
        body = b"{}"
        self.assertFalse(verify_webhook_signature(body, webhook_signature(body)))


class WebhookEventTests(TestCase):

    def make_order(self, **overrides):
        fields = {
            "order_number": "SS0001",
            "gateway_order_id": "order_test_1",
            "payment_method": "ONLINE",
            "payment_status": "PENDING",
            "total": Decimal("1700.00"),
        }
        fields.update(overrides)
        return Order.objects.create(**fields)

    def test_capture_marks_order_paid_and_confirmed(self):
        order = self.make_order()

        result = handle_webhook_event(captured())

        order.refresh_from_db()
        self.assertEqual(result["orderNumber"], "SS0001")
        self.assertEqual(order.payment_status, "PAID")
        self.assertEqual(order.order_status, "CONFIRMED")
        self.assertEqual(order.gateway_payment_id, "pay_test_1")
        self.assertIsNotNone(order.paid_at)

    def test_replay_is_a_no_op(self):
        order = self.make_order()
        handle_webhook_event(captured())
        order.refresh_from_db()
        first_update = order.updated_at

        handle_webhook_event(captured())

        order.refresh_from_db()
        self.assertEqual(order.updated_at, first_update)
        self.assertEqual(order.payment_status, "PAID")

    def test_cod_advance_capture_confirms_without_marking_paid(self):
        order = self.make_order(payment_method="COD", payment_status="PARTIALLY_PAID", gateway_payment_id="pay_test_1")

        handle_webhook_event(captured())

        order.refresh_from_db()
        self.assertEqual(order.payment_status, "PARTIALLY_PAID")
        self.assertEqual(order.order_status, "CONFIRMED")

    def test_shipped_order_is_not_moved_back(self):
        order = self.make_order(payment_status="PAID", order_status="SHIPPED", gateway_payment_id="pay_test_1")
        handle_webhook_event(captured())
        order.refresh_from_db()
        self.assertEqual(order.order_status, "SHIPPED")

    def test_capture_without_order_is_kept_as_orphan(self):
        result = handle_webhook_event(captured(order_id="order_lost", payment_id="pay_lost"))
        handle_webhook_event(captured(order_id="order_lost", payment_id="pay_lost"))

        self.assertTrue(result["orphan"])
        orphan = OrphanPayment.objects.get()
        self.assertEqual(orphan.gateway_order_id, "order_lost")
        self.assertEqual(orphan.amount_minor, 170000)
        self.assertFalse(orphan.processed)

    def test_other_events_are_acknowledged(self):
        order = self.make_order()
        self.assertEqual(handle_webhook_event(captured(event="payment.failed", status="failed")), {"received": True})
        order.refresh_from_db()
        self.assertEqual(order.payment_status, "PENDING")

    def test_malformed_body(self):
        with self.assertRaises(ValidationFailed):
            handle_webhook_event({"event": "payment.captured"})
