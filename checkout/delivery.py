# checkout/delivery.py
import json
import logging
import re
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import requests
from django.conf import settings

from storefront.exceptions import ExternalServiceError, ValidationFailed
from storefront.validators import is_deliverable_address, normalize_address

from .pricing import to_money

logger = logging.getLogger(__name__)

TRACKING_URL = "https://www.delhivery.com/track/package/{waybill}"

# Package defaults in kg / cm
DEFAULT_WEIGHT = 0.5
DEFAULT_LENGTH = 20
DEFAULT_BREADTH = 15
DEFAULT_HEIGHT = 10


def sanitize_text(text):
    """The partner rejects non-ASCII characters in shipment fields."""
    if not isinstance(text, str):
        return ""
    return re.sub(r"[^\x00-\x7F]", "-", text).strip()


class DelhiveryAPI:
    """Delhivery API client with token auth and retry logic"""

    def __init__(self):
        self.base_url = (settings.DELHIVERY_BASE_URL or "").strip().rstrip("/")
        self.token = settings.DELHIVERY_API_TOKEN
        if not self.token:
            raise ExternalServiceError("Shipping partner is not configured")

    def get_headers(self, form=False):
        return {
            "Authorization": f"Token {self.token}",
            "Accept": "application/json",
            "Content-Type": "application/x-www-form-urlencoded" if form else "application/json",
        }

    def check_pincode(self, pincode):
        """
        Serviceability lookup for one pincode.
        Returns (success, postal_code_dict_or_None) or (False, error message).
        """
        url = f"{self.base_url}/c/api/pin-codes/json/"
        for attempt in range(3):
            try:
                response = requests.get(
                    url, params={"filter_codes": pincode}, headers=self.get_headers(), timeout=10
                )
                response.raise_for_status()
                data = response.json()
                codes = data.get("delivery_codes") or []
                if not codes:
                    logger.info(f"Pincode {pincode} not serviceable")
                    return True, None
                return True, codes[0].get("postal_code", {})
            except requests.exceptions.Timeout:
                logger.warning(f"Delhivery pincode timeout (attempt {attempt + 1})")
                if attempt == 2:
                    return False, "Shipping partner timed out"
                time.sleep(2 ** attempt)
            except (requests.exceptions.RequestException, ValueError) as e:
                logger.error(f"Delhivery pincode error: {str(e)}")
                return False, str(e)

    def create_shipment(self, order):
        """
        Create a forward shipment (IDEMPOTENT)
        Returns (success, result_dict) or (False, error message)
        """
        if order.waybill:
            logger.info(f"Delhivery shipment already exists for {order.order_number}: {order.waybill}")
            return True, {
                "waybill": order.waybill,
                "courier_name": order.courier_name or "Delhivery",
                "tracking_url": order.tracking_url,
            }

        address = order.shipping_address
        items = order.items or []
        quantity = sum(int(item.get("quantity", 1)) for item in items) or 1
        products_desc = ", ".join(
            f"{sanitize_text(str(item.get('name') or 'Item'))[:100]} x{item.get('quantity', 1)}" for item in items
        ) or f"Item x{quantity}"
        is_cod = order.payment_method == "COD"

        line2 = address.get("addressLine2", "")
        shipment = {
            "name": sanitize_text(address.get("fullName") or "Customer"),
            "add": sanitize_text(", ".join(part for part in (address.get("addressLine1", ""), line2) if part)),
            "city": sanitize_text(address.get("city", "")),
            "state": sanitize_text(address.get("state", "")),
            "pin": str(address.get("pincode", "")),
            "country": address.get("country") or "India",
            "phone": str(address.get("phone", "")),
            "order": order.order_number,
            "payment_mode": "COD" if is_cod else "Prepaid",
            "products_desc": products_desc,
            "quantity": quantity,
            "total_amount": float(order.total),
            "weight": DEFAULT_WEIGHT * quantity,
            "shipment_length": DEFAULT_LENGTH,
            "shipment_breadth": DEFAULT_BREADTH,
            "shipment_height": max(DEFAULT_HEIGHT, 2 * quantity),
        }
        if is_cod:
            if order.remaining_cod <= 0:
                return False, "COD shipment requires an amount to collect"
            shipment["cod_amount"] = float(order.remaining_cod)

        payload = {
            "pickup_location": settings.DELHIVERY_PICKUP_LOCATION,
            "shipments": [shipment],
        }

        try:
            url = f"{self.base_url}/api/cmu/create.json"
            response = requests.post(
                url,
                data={"format": "json", "data": json.dumps(payload)},
                headers=self.get_headers(form=True),
                timeout=30,
            )
            response.raise_for_status()
            data = response.json()

            packages = data.get("packages") or []
            waybill = packages[0].get("waybill") if packages else data.get("upload_wbn")
            if waybill and (data.get("success") or packages):
                logger.info(f"Delhivery shipment created for {order.order_number}: {waybill}")
                return True, {
                    "waybill": str(waybill),
                    "courier_name": "Delhivery",
                    "tracking_url": TRACKING_URL.format(waybill=waybill),
                }

            remarks = packages[0].get("remarks") if packages else data.get("rmk")
            logger.error(f"Delhivery shipment creation failed for {order.order_number}: {data}")
            return False, str(remarks or data.get("error") or "Shipment creation failed")

        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Delhivery shipment error: {str(e)}", exc_info=True)
            return False, str(e)

    def track(self, waybill):
        """Fetch tracking details for a waybill"""
        try:
            url = f"{self.base_url}/api/v1/packages/json/"
            response = requests.get(url, params={"waybill": waybill}, headers=self.get_headers(), timeout=15)
            response.raise_for_status()
            data = response.json()

            shipments = data.get("ShipmentData") or []
            if shipments:
                shipment = shipments[0].get("Shipment", {})
                status = shipment.get("Status", {})
                return True, {
                    "status": status.get("Status", ""),
                    "status_time": status.get("StatusDateTime"),
                    "waybill": shipment.get("AWB", waybill),
                    "expected_delivery": shipment.get("ExpectedDeliveryDate"),
                    "scans": shipment.get("Scans", []),
                    "tracking_url": TRACKING_URL.format(waybill=waybill),
                }
            return False, "Tracking data not available"

        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Delhivery tracking error: {str(e)}")
            return False, str(e)


@dataclass(frozen=True)
class DeliveryQuote:
    serviceable: bool
    shipping_charge: Optional[Decimal]
    eta_days: Optional[int]
    cod_available: bool

    def to_dict(self):
        return {
            "serviceable": self.serviceable,
            "shippingCharge": str(self.shipping_charge) if self.shipping_charge is not None else None,
            "etaDays": self.eta_days,
            "codAvailable": self.cod_available,
        }


def check_delivery(address, items=None):
    """
    Ask the shipping partner whether ``address`` can be served.

    Incomplete addresses are rejected before any network call. Partner failures
    raise ExternalServiceError; an unknown pincode is a normal
    ``serviceable=False`` answer.
    """
    address = normalize_address(address)
    if not is_deliverable_address(address):
        raise ValidationFailed("Complete the address to check delivery", code="address_incomplete")
    if items is not None and not items:
        raise ValidationFailed("Cart is empty")

    success, postal_code = DelhiveryAPI().check_pincode(address["pincode"])
    if not success:
        raise ExternalServiceError("Unable to check delivery right now", detail=postal_code)

    if not postal_code or postal_code.get("pre_paid") != "Y":
        return DeliveryQuote(serviceable=False, shipping_charge=None, eta_days=None, cod_available=False)

    return DeliveryQuote(
        serviceable=True,
        shipping_charge=to_money(settings.DELIVERY_FLAT_CHARGE),
        eta_days=settings.DELIVERY_DEFAULT_ETA_DAYS,
        cod_available=postal_code.get("cod") == "Y",
    )
