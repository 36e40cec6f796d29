import hashlib
import hmac
from datetime import timedelta
from decimal import Decimal
from unittest import mock

import requests
from django.utils import timezone

from catalog.models import Product
from checkout.models import Coupon, GatewayOrder

KEY_ID = "rzp_test_key"
KEY_SECRET = "rzp_test_secret"
WEBHOOK_SECRET = "rzp_webhook_secret"

GATEWAY_SETTINGS = {
    "RAZORPAY_BASE_URL": "https://api.razorpay.test/v1",
    "RAZORPAY_KEY_ID": KEY_ID,
    "RAZORPAY_KEY_SECRET": KEY_SECRET,
    "RAZORPAY_WEBHOOK_SECRET": WEBHOOK_SECRET,
}

DELHIVERY_SETTINGS = {
    "DELHIVERY_BASE_URL": "https://track.delhivery.test",
    "DELHIVERY_API_TOKEN": "dlv_test_token",
    "DELHIVERY_WEBHOOK_TOKEN": "dlv_webhook_token",
    "DELHIVERY_PICKUP_LOCATION": "SoulSeam Warehouse",
}

ADDRESS = {
    "fullName": "Asha Rao",
    "phone": "9876543210",
    "addressLine1": "12 MG Road",
    "addressLine2": "Near Metro",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
    "country": "India",
}


def make_product(name="Linen Shirt", price="1000.00", sizes=None, **kwargs):
    return Product.objects.create(
        name=name,
        price=Decimal(price),
        sizes=sizes if sizes is not None else ["M", "L"],
        image_url="https://cdn.example.com/shirt.jpg",
        **kwargs,
    )


def make_coupon(code="PREMIUM15", discount_type="percentage", value="15", days=30, **kwargs):
    return Coupon.objects.create(
        code=code,
        discount_type=discount_type,
        discount_value=Decimal(value),
        expiry_date=timezone.localdate() + timedelta(days=days),
        **kwargs,
    )


def make_gateway_order(gateway_order_id="order_test_1", purpose="ONLINE", amount_minor=170000):
    return GatewayOrder.objects.create(
        gateway_order_id=gateway_order_id,
        purpose=purpose,
        amount_minor=amount_minor,
    )


def sign(order_id, payment_id, secret=KEY_SECRET):
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def signed_payment(order_id, payment_id="pay_test_1"):
    return {"orderId": order_id, "paymentId": payment_id, "signature": sign(order_id, payment_id)}


def webhook_signature(body):
    return hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()


def mock_response(data, status=200):
    response = mock.Mock()
    response.status_code = status
    response.ok = status < 400
    response.json.return_value = data
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status} Error")
    else:
        response.raise_for_status.return_value = None
    return response
