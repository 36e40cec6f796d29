from decimal import Decimal
from unittest import mock

from django.core import mail
from django.test import TestCase, override_settings

from accounts.identity import Identity, upsert_guest
from catalog.models import Product, ProductSize
from checkout.models import Coupon, GatewayOrder, Order, OrphanPayment, StoreSettings
from checkout.orders import create_order, quote_order
from checkout.payments import VerifiedPayment
from storefront.exceptions import CouponRejected, DuplicateOrder, PaymentNotConfirmed, ValidationFailed

from .helpers import ADDRESS, GATEWAY_SETTINGS, make_coupon, make_gateway_order, make_product


@override_settings(**GATEWAY_SETTINGS)
class OrderWriterTests(TestCase):

    def setUp(self):
        self.product = make_product(price="1000.00")
        self.guest = upsert_guest("sess-1", name="Asha Rao", email="asha@example.com", phone="9876543210")
        self.identity = Identity(guest=self.guest)

    def payload(self, **overrides):
        data = {
            "items": [{"productId": str(self.product.pk), "quantity": 2, "size": "M", "unitPrice": "1.00"}],
            "shippingAddress": ADDRESS,
            "paymentMethod": "ONLINE",
            "email": "asha@example.com",
        }
        data.update(overrides)
        return data

    def online_payment(self, amount_minor=200000, gateway_order_id="order_test_1", payment_id="pay_test_1"):
        gateway_order = make_gateway_order(gateway_order_id, amount_minor=amount_minor)
        return VerifiedPayment(gateway_order=gateway_order, payment_id=payment_id, signature="sig")

    def advance_payment(self, payment_id="pay_adv_1"):
        gateway_order = make_gateway_order("order_adv_1", purpose="COD_ADVANCE", amount_minor=10000)
        return VerifiedPayment(gateway_order=gateway_order, payment_id=payment_id, signature="sig")

    def disable_cod_advance(self):
        store = StoreSettings.get_settings()
        store.cod_advance_enabled = False
        store.save()

    def test_quote_uses_catalog_prices(self):
        make_coupon("PREMIUM15")
        quote = quote_order(self.payload()["items"], "PREMIUM15")

        self.assertEqual(quote.lines[0]["unitPrice"], "1000.00")
        self.assertEqual(quote.pricing.subtotal, Decimal("2000.00"))
        self.assertEqual(quote.pricing.discount, Decimal("300.00"))
        self.assertEqual(quote.pricing.total, Decimal("1700.00"))
        self.assertEqual(Coupon.objects.get().times_redeemed, 0)

    def test_paid_online_order(self):
        make_coupon("PREMIUM15")
        payment = self.online_payment(amount_minor=170000)

        order = create_order(self.payload(couponCode="premium15"), self.identity, payment=payment)

        self.assertEqual(order.order_number, "SS0001")
        self.assertEqual(order.guest_user, self.guest)
        self.assertIsNone(order.user)
        self.assertEqual(order.payment_status, "PAID")
        self.assertEqual(order.order_status, "CREATED")
        self.assertEqual(order.coupon_code, "PREMIUM15")
        self.assertEqual(order.subtotal - order.discount + order.shipping_charge, order.total)
        self.assertEqual(order.total, Decimal("1700.00"))
        self.assertEqual(order.items[0]["lineTotal"], "2000.00")
        self.assertEqual(order.shipping_address["pincode"], "560001")
        self.assertEqual(order.gateway_payment_id, "pay_test_1")
        self.assertEqual(Coupon.objects.get().times_redeemed, 1)
        self.assertEqual(GatewayOrder.objects.get().status, "CONSUMED")

    @override_settings(DELIVERY_FLAT_CHARGE="60")
    def test_shipping_charge_is_added(self):
        order = create_order(self.payload(), self.identity, payment=self.online_payment(amount_minor=206000))
        self.assertEqual(order.shipping_charge, Decimal("60.00"))
        self.assertEqual(order.total, Decimal("2060.00"))

    def test_order_numbers_are_sequential(self):
        first = create_order(self.payload(), self.identity, payment=self.online_payment())
        second = create_order(
            self.payload(),
            self.identity,
            payment=self.online_payment(gateway_order_id="order_test_2", payment_id="pay_test_2"),
        )
        self.assertEqual((first.order_number, second.order_number), ("SS0001", "SS0002"))

    @override_settings(ADMIN_ORDER_EMAIL="admin@soulseam.local")
    def test_notifications_are_sent_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            order = create_order(self.payload(), self.identity, payment=self.online_payment())

        recipients = sorted(message.to[0] for message in mail.outbox)
        self.assertEqual(recipients, ["admin@soulseam.local", "asha@example.com"])
        order.refresh_from_db()
        self.assertTrue(order.customer_notified)

    def test_duplicate_payment_returns_existing_order(self):
        payment = self.online_payment()
        first = create_order(self.payload(), self.identity, payment=payment)

        with self.assertRaises(DuplicateOrder) as ctx:
            create_order(self.payload(), self.identity, payment=payment)

        self.assertEqual(ctx.exception.status, 409)
        self.assertEqual(ctx.exception.extra["orderNumber"], first.order_number)
        self.assertEqual(Order.objects.count(), 1)

    def test_concurrent_resubmission_returns_existing_order(self):
        payment = self.online_payment()
        first = create_order(self.payload(), self.identity, payment=payment)

        # Second request read the database before the first one committed
        with mock.patch("checkout.orders._raise_if_duplicate"):
            with self.assertRaises(DuplicateOrder) as ctx:
                create_order(self.payload(), self.identity, payment=payment)

        self.assertEqual(ctx.exception.extra["orderNumber"], first.order_number)
        self.assertEqual(Order.objects.count(), 1)
        self.assertFalse(OrphanPayment.objects.exists())

    def test_amount_mismatch_keeps_payment_as_orphan(self):
        make_coupon("PREMIUM15")
        payment = self.online_payment(amount_minor=100000)

        with self.assertRaises(PaymentNotConfirmed) as ctx:
            create_order(self.payload(couponCode="PREMIUM15"), self.identity, payment=payment)

        self.assertEqual(ctx.exception.extra["paymentReference"], "pay_test_1")
        self.assertFalse(Order.objects.exists())
        orphan = OrphanPayment.objects.get()
        self.assertEqual(orphan.gateway_order_id, "order_test_1")
        self.assertIn("does not match", orphan.reason)
        # Rolled back with the order
        self.assertEqual(Coupon.objects.get().times_redeemed, 0)
        self.assertEqual(GatewayOrder.objects.get().status, "CREATED")

    def test_exhausted_coupon_after_payment(self):
        make_coupon("ONCE", usage_limit=1, times_redeemed=1)
        with self.assertRaises(PaymentNotConfirmed):
            create_order(self.payload(couponCode="ONCE"), self.identity, payment=self.online_payment())
        self.assertEqual(OrphanPayment.objects.count(), 1)

    def test_online_order_requires_payment(self):
        with self.assertRaises(ValidationFailed) as ctx:
            create_order(self.payload(), self.identity)
        self.assertEqual(ctx.exception.code, "payment_required")

    def test_advance_payment_cannot_pay_online_order(self):
        with self.assertRaises(PaymentNotConfirmed):
            create_order(self.payload(), self.identity, payment=self.advance_payment())

    def test_cod_requires_advance_when_enabled(self):
        with self.assertRaises(ValidationFailed) as ctx:
            create_order(self.payload(paymentMethod="COD"), self.identity)
        self.assertEqual(ctx.exception.code, "cod_advance_required")

    def test_cod_with_advance(self):
        make_coupon("PREMIUM15")
        order = create_order(
            self.payload(paymentMethod="COD", couponCode="PREMIUM15"),
            self.identity,
            advance_payment=self.advance_payment(),
        )

        self.assertEqual(order.payment_method, "COD")
        self.assertEqual(order.payment_status, "PARTIALLY_PAID")
        self.assertEqual(order.advance_paid, Decimal("100.00"))
        self.assertEqual(order.remaining_cod, Decimal("1600.00"))
        self.assertEqual(order.advance_paid + order.remaining_cod, order.total)
        self.assertEqual(order.gateway_payment_id, "pay_adv_1")

    def test_cod_without_advance_when_disabled(self):
        self.disable_cod_advance()
        order = create_order(self.payload(paymentMethod="COD"), self.identity)

        self.assertEqual(order.payment_status, "PENDING")
        self.assertEqual(order.advance_paid, Decimal("0.00"))
        self.assertEqual(order.remaining_cod, Decimal("2000.00"))
        self.assertIsNone(order.gateway_payment_id)

    def test_invalid_address(self):
        self.disable_cod_advance()
        with self.assertRaises(ValidationFailed) as ctx:
            create_order(
                self.payload(paymentMethod="COD", shippingAddress={**ADDRESS, "pincode": "12"}),
                self.identity,
            )
        self.assertIn("pincode", ctx.exception.extra["fields"])

    def test_unavailable_product(self):
        self.disable_cod_advance()
        self.product.is_active = False
        self.product.save()

        with self.assertRaises(ValidationFailed) as ctx:
            create_order(self.payload(paymentMethod="COD"), self.identity)
        self.assertEqual(ctx.exception.code, "item_unavailable")

    def test_invalid_lines(self):
        self.disable_cod_advance()
        bad_lines = (
            [],
            [{"productId": str(self.product.pk), "quantity": 0, "size": "M"}],
            [{"productId": str(self.product.pk), "quantity": 21, "size": "M"}],
            [{"productId": str(self.product.pk), "quantity": 1, "size": "XXL"}],
            [{"productId": "abc", "quantity": 1}],
        )
        for items in bad_lines:
            with self.assertRaises(ValidationFailed):
                create_order(self.payload(paymentMethod="COD", items=items), self.identity)
        self.assertFalse(Order.objects.exists())

    def test_unsupported_method(self):
        with self.assertRaises(ValidationFailed):
            create_order(self.payload(paymentMethod="UPI"), self.identity)

    def test_coupon_rejection_without_payment(self):
        self.disable_cod_advance()
        make_coupon("ONCE", usage_limit=1, times_redeemed=1)
        with self.assertRaises(CouponRejected):
            create_order(self.payload(paymentMethod="COD", couponCode="ONCE"), self.identity)


@override_settings(**GATEWAY_SETTINGS)
class OrderStockTests(TestCase):

    def setUp(self):
        self.product = make_product(price="1000.00")
        ProductSize.objects.create(product=self.product, size="M", stock=3)
        ProductSize.objects.create(product=self.product, size="L", stock=0)
        self.identity = Identity(guest=upsert_guest("sess-1", name="Asha Rao", email="asha@example.com"))
        store = StoreSettings.get_settings()
        store.cod_advance_enabled = False
        store.save()

    def payload(self, quantity=2, size="M"):
        return {
            "items": [{"productId": str(self.product.pk), "quantity": quantity, "size": size}],
            "shippingAddress": ADDRESS,
            "paymentMethod": "COD",
        }

    def payment(self, gateway_order_id, payment_id):
        gateway_order = make_gateway_order(gateway_order_id, amount_minor=100000)
        return VerifiedPayment(gateway_order=gateway_order, payment_id=payment_id, signature="sig")

    def stock(self, size):
        return ProductSize.objects.get(product=self.product, size=size).stock

    def test_order_takes_stock(self):
        create_order(self.payload(quantity=2), self.identity)
        self.assertEqual(self.stock("M"), 1)

    def test_quote_rejects_short_stock(self):
        with self.assertRaises(ValidationFailed) as ctx:
            quote_order(self.payload(quantity=4)["items"])
        self.assertEqual(ctx.exception.code, "out_of_stock")

        with self.assertRaises(ValidationFailed):
            quote_order(self.payload(quantity=1, size="L")["items"])

    def test_lines_sharing_a_size_cannot_oversell(self):
        payload = self.payload()
        payload["items"] = [
            {"productId": str(self.product.pk), "quantity": 2, "size": "M", "color": "Blue"},
            {"productId": str(self.product.pk), "quantity": 2, "size": "M", "color": "White"},
        ]

        with self.assertRaises(ValidationFailed) as ctx:
            create_order(payload, self.identity)

        self.assertEqual(ctx.exception.code, "out_of_stock")
        self.assertFalse(Order.objects.exists())
        self.assertEqual(self.stock("M"), 3)

    def test_last_units_deactivate_product(self):
        create_order(self.payload(quantity=3), self.identity)

        self.assertEqual(self.stock("M"), 0)
        self.assertFalse(Product.objects.get(pk=self.product.pk).is_active)

    def test_sold_out_after_payment_keeps_payment_as_orphan(self):
        ProductSize.objects.filter(product=self.product, size="M").update(stock=1)
        payload = {**self.payload(quantity=1), "paymentMethod": "ONLINE"}
        first = self.payment("order_a", "pay_a")
        second = self.payment("order_b", "pay_b")

        create_order(payload, self.identity, payment=first)
        self.product.is_active = True
        self.product.save()
        with self.assertRaises(PaymentNotConfirmed):
            create_order(payload, self.identity, payment=second)

        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(OrphanPayment.objects.get().gateway_payment_id, "pay_b")
        self.assertEqual(GatewayOrder.objects.get(gateway_order_id="order_b").status, "CREATED")


class PaymentStatusTests(TestCase):

    def test_orders_only_record_verified_outcomes(self):
        statuses = [value for value, _ in Order.PAYMENT_STATUS_CHOICES]
        self.assertEqual(statuses, ["PENDING", "PARTIALLY_PAID", "PAID"])
