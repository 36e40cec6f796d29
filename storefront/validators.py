# storefront/validators.py
import re

EMAIL_RE = re.compile(r'[\w.+-]+@[\w-]+(\.[\w-]+)+')
PHONE_RE = re.compile(r'[6-9]\d{9}')
PINCODE_RE = re.compile(r'\d{6}')

ADDRESS_REQUIRED_FIELDS = ("fullName", "phone", "addressLine1", "city", "state", "pincode")
ADDRESS_FIELDS = ADDRESS_REQUIRED_FIELDS + ("addressLine2", "country")
DEFAULT_COUNTRY = "India"


def validate_email(email):
    return bool(email) and EMAIL_RE.fullmatch(email) is not None


def validate_phone_number(phone):
    """Validate Indian mobile number format"""
    return bool(phone) and PHONE_RE.fullmatch(phone) is not None


def validate_pincode(pincode):
    """Validate 6-digit pincode"""
    return bool(pincode) and PINCODE_RE.fullmatch(pincode) is not None


def _clean(value):
    return value.strip() if isinstance(value, str) else ""


def normalize_address(data):
    """
    Trim every address field and default the country.
    Returns a plain dict suitable for snapshotting onto an order.
    """
    data = data if isinstance(data, dict) else {}
    address = {field: _clean(data.get(field)) for field in ADDRESS_FIELDS}
    address["country"] = address["country"] or DEFAULT_COUNTRY
    return address


def address_errors(address):
    """Map of field -> message for a normalized address; empty when valid."""
    errors = {}
    for field in ADDRESS_REQUIRED_FIELDS:
        if not address.get(field):
            errors[field] = f"{field} is required"
    if address.get("phone") and not validate_phone_number(address["phone"]):
        errors["phone"] = "Invalid mobile number"
    if address.get("pincode") and not validate_pincode(address["pincode"]):
        errors["pincode"] = "Please enter a valid 6-digit PIN code"
    return errors


def is_deliverable_address(address):
    """All fields the shipping partner needs are present and well-formed."""
    return all(address.get(field) for field in ("addressLine1", "city", "state", "country")) \
        and validate_pincode(address.get("pincode", ""))
