import json
from decimal import Decimal
from unittest import mock

import requests
from django.test import SimpleTestCase, override_settings

from checkout.delivery import DelhiveryAPI, check_delivery, sanitize_text
from checkout.models import Order
from storefront.exceptions import ExternalServiceError, ValidationFailed

from .helpers import ADDRESS, DELHIVERY_SETTINGS, mock_response


def pincode_response(pre_paid="Y", cod="Y"):
    return mock_response({
        "delivery_codes": [{"postal_code": {"pin": 560001, "pre_paid": pre_paid, "cod": cod}}],
    })


@override_settings(**DELHIVERY_SETTINGS)
class CheckDeliveryTests(SimpleTestCase):

    @mock.patch("checkout.delivery.requests.get")
    def test_serviceable_pincode(self, mock_get):
        mock_get.return_value = pincode_response(cod="N")

        quote = check_delivery(ADDRESS, items=[{"productId": "1"}])

        self.assertTrue(quote.serviceable)
        self.assertFalse(quote.cod_available)
        self.assertEqual(quote.shipping_charge, Decimal("0.00"))
        self.assertEqual(quote.eta_days, 3)
        self.assertEqual(mock_get.call_args.kwargs["params"], {"filter_codes": "560001"})
        self.assertEqual(mock_get.call_args.kwargs["headers"]["Authorization"], "Token dlv_test_token")

    @override_settings(DELIVERY_FLAT_CHARGE="49", DELIVERY_DEFAULT_ETA_DAYS=5)
    @mock.patch("checkout.delivery.requests.get")
    def test_configured_charge_and_eta(self, mock_get):
        mock_get.return_value = pincode_response()

        quote = check_delivery(ADDRESS)

        self.assertEqual(quote.to_dict(), {
            "serviceable": True,
            "shippingCharge": "49.00",
            "etaDays": 5,
            "codAvailable": True,
        })

    @mock.patch("checkout.delivery.requests.get")
    def test_unknown_pincode_is_not_serviceable(self, mock_get):
        mock_get.return_value = mock_response({"delivery_codes": []})

        quote = check_delivery(ADDRESS)

        self.assertFalse(quote.serviceable)
        self.assertIsNone(quote.shipping_charge)

    @mock.patch("checkout.delivery.requests.get")
    def test_prepaid_disabled_is_not_serviceable(self, mock_get):
        mock_get.return_value = pincode_response(pre_paid="N")
        self.assertFalse(check_delivery(ADDRESS).serviceable)

    @mock.patch("checkout.delivery.requests.get")
    def test_incomplete_address_never_calls_partner(self, mock_get):
        with self.assertRaises(ValidationFailed) as ctx:
            check_delivery({**ADDRESS, "city": ""})
        self.assertEqual(ctx.exception.code, "address_incomplete")

        with self.assertRaises(ValidationFailed):
            check_delivery({**ADDRESS, "pincode": "5600"})
        mock_get.assert_not_called()

    @mock.patch("checkout.delivery.requests.get")
    def test_empty_cart(self, mock_get):
        with self.assertRaises(ValidationFailed):
            check_delivery(ADDRESS, items=[])
        mock_get.assert_not_called()

    @mock.patch("checkout.delivery.requests.get")
    def test_partner_error(self, mock_get):
        mock_get.side_effect = requests.exceptions.ConnectionError("refused")
        with self.assertRaises(ExternalServiceError):
            check_delivery(ADDRESS)

    @mock.patch("checkout.delivery.time.sleep")
    @mock.patch("checkout.delivery.requests.get")
    def test_timeouts_are_retried(self, mock_get, mock_sleep):
        mock_get.side_effect = requests.exceptions.Timeout()

        with self.assertRaises(ExternalServiceError):
            check_delivery(ADDRESS)
        self.assertEqual(mock_get.call_count, 3)
        self.assertEqual([c.args[0] for c in mock_sleep.call_args_list], [1, 2])

    @override_settings(DELHIVERY_API_TOKEN=None)
    def test_missing_token(self):
        with self.assertRaises(ExternalServiceError):
            check_delivery(ADDRESS)


@override_settings(**DELHIVERY_SETTINGS)
class ShipmentRequestTests(SimpleTestCase):

    def order(self, **overrides):
        fields = {
            "order_number": "SS0007",
            "items": [{"name": "Linen Shirt – Ivory", "quantity": 2, "unitPrice": "1000.00"}],
            "shipping_address": ADDRESS,
            "total": Decimal("1700.00"),
            "payment_method": "ONLINE",
            "remaining_cod": Decimal("0.00"),
        }
        fields.update(overrides)
        return Order(**fields)

    @mock.patch("checkout.delivery.requests.post")
    def test_prepaid_shipment(self, mock_post):
        mock_post.return_value = mock_response({"success": True, "packages": [{"waybill": "9900112233"}]})

        success, result = DelhiveryAPI().create_shipment(self.order())

        self.assertTrue(success)
        self.assertEqual(result["waybill"], "9900112233")
        self.assertIn("9900112233", result["tracking_url"])

        sent = mock_post.call_args.kwargs["data"]
        self.assertEqual(sent["format"], "json")
        payload = json.loads(sent["data"])
        shipment = payload["shipments"][0]
        self.assertEqual(payload["pickup_location"], "SoulSeam Warehouse")
        self.assertEqual(shipment["payment_mode"], "Prepaid")
        self.assertEqual(shipment["order"], "SS0007")
        self.assertEqual(shipment["quantity"], 2)
        self.assertEqual(shipment["add"], "12 MG Road, Near Metro")
        self.assertNotIn("cod_amount", shipment)
        self.assertTrue(shipment["products_desc"].isascii())

    @mock.patch("checkout.delivery.requests.post")
    def test_cod_shipment_collects_remaining_amount(self, mock_post):
        mock_post.return_value = mock_response({"success": True, "packages": [{"waybill": "1"}]})

        DelhiveryAPI().create_shipment(self.order(payment_method="COD", remaining_cod=Decimal("1600.00")))

        shipment = json.loads(mock_post.call_args.kwargs["data"]["data"])["shipments"][0]
        self.assertEqual(shipment["payment_mode"], "COD")
        self.assertEqual(shipment["cod_amount"], 1600.0)

    @mock.patch("checkout.delivery.requests.post")
    def test_existing_waybill_is_reused(self, mock_post):
        success, result = DelhiveryAPI().create_shipment(self.order(waybill="555"))

        self.assertTrue(success)
        self.assertEqual(result["waybill"], "555")
        mock_post.assert_not_called()

    @mock.patch("checkout.delivery.requests.post")
    def test_rejected_shipment(self, mock_post):
        mock_post.return_value = mock_response({"packages": [{"status": "Fail", "remarks": ["Duplicate order id"]}]})

        success, message = DelhiveryAPI().create_shipment(self.order())

        self.assertFalse(success)
        self.assertIn("Duplicate order id", message)

    @mock.patch("checkout.delivery.requests.get")
    def test_track(self, mock_get):
        mock_get.return_value = mock_response({"ShipmentData": [{"Shipment": {
            "AWB": "9900112233",
            "Status": {"Status": "In Transit", "StatusDateTime": "2026-10-18T10:00:00"},
            "Scans": [],
        }}]})

        success, result = DelhiveryAPI().track("9900112233")

        self.assertTrue(success)
        self.assertEqual(result["status"], "In Transit")

    def test_sanitize_text(self):
        self.assertEqual(sanitize_text(" Café "), "Caf-")
        self.assertEqual(sanitize_text(None), "")
