# checkout/flow.py
"""
Checkout wizard: Information -> Shipping -> Payment -> Completed.

``reduce(state, event)`` is pure: it never touches the database, the session or
the network. Views feed it events built from server-side facts (verification
reports, cart size, store settings) and persist the result in the session.
A rejected transition raises FlowError and leaves the stored state untouched.
"""
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Optional

from storefront.exceptions import FlowError
from storefront.validators import address_errors, normalize_address, validate_email, validate_phone_number

STEP_INFORMATION = "information"
STEP_SHIPPING = "shipping"
STEP_PAYMENT = "payment"
STEP_COMPLETED = "completed"

METHOD_ONLINE = "ONLINE"
METHOD_COD = "COD"
PAYMENT_METHODS = (METHOD_ONLINE, METHOD_COD)

PURPOSE_ONLINE = "ONLINE"
PURPOSE_COD_ADVANCE = "COD_ADVANCE"

ERROR_CANCELLED = "payment_cancelled"
ERROR_VERIFICATION_FAILED = "payment_verification_failed"
ERROR_NOT_CONFIRMED = "payment_captured_order_not_confirmed"
ERROR_ORDER_FAILED = "order_failed"

# Which contact field each verification channel proves
CHANNEL_FIELDS = {"email": "email", "whatsapp": "phone"}


@dataclass(frozen=True)
class CheckoutData:
    """Everything the shopper has entered so far; survives back navigation."""

    name: str = ""
    email: str = ""
    phone: str = ""
    address: dict = field(default_factory=dict)
    create_account: bool = False
    verification_channel: str = "email"
    delivery: Optional[dict] = None
    delivery_error: Optional[str] = None
    coupon: Optional[dict] = None
    payment_method: str = METHOD_ONLINE


@dataclass(frozen=True)
class Information:
    data: CheckoutData = field(default_factory=CheckoutData)
    step = STEP_INFORMATION


@dataclass(frozen=True)
class Shipping:
    data: CheckoutData
    step = STEP_SHIPPING


@dataclass(frozen=True)
class Payment:
    data: CheckoutData
    # None when no COD advance is required
    cod_advance_amount: Optional[str] = None
    advance_reference: Optional[str] = None
    payment_reference: Optional[str] = None
    in_flight: bool = False
    error: Optional[str] = None
    step = STEP_PAYMENT


@dataclass(frozen=True)
class Completed:
    data: CheckoutData
    order_number: str
    step = STEP_COMPLETED


# ---------- events ----------

@dataclass(frozen=True)
class EditDetails:
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[dict] = None
    create_account: Optional[bool] = None
    verification_channel: Optional[str] = None


@dataclass(frozen=True)
class SubmitInformation:
    # channel -> identifier the verification gate has confirmed
    verified: dict = field(default_factory=dict)


@dataclass(frozen=True)
class SubmitShipping:
    cart_size: int
    cod_advance_amount: Optional[str] = None


@dataclass(frozen=True)
class Back:
    pass


@dataclass(frozen=True)
class DeliveryChecked:
    quote: dict


@dataclass(frozen=True)
class DeliveryFailed:
    message: str


@dataclass(frozen=True)
class CouponApplied:
    code: str
    discount_amount: str
    final_total: str


@dataclass(frozen=True)
class CouponRemoved:
    pass


@dataclass(frozen=True)
class SelectPaymentMethod:
    method: str


@dataclass(frozen=True)
class StartPayment:
    purpose: str


@dataclass(frozen=True)
class PaymentCancelled:
    pass


@dataclass(frozen=True)
class PaymentRejected:
    """Signature verification failed on the server."""


@dataclass(frozen=True)
class AdvancePaid:
    reference: str


@dataclass(frozen=True)
class PlaceOrder:
    payment_reference: Optional[str] = None


@dataclass(frozen=True)
class OrderFailed:
    message: str = ""


@dataclass(frozen=True)
class OrderConfirmed:
    order_number: str


@dataclass(frozen=True)
class Restart:
    pass


# ---------- guards ----------

def information_errors(data, verified):
    errors = {}
    if not data.name:
        errors["name"] = "Name is required"
    if not validate_email(data.email):
        errors["email"] = "Valid email address required"
    if not validate_phone_number(data.phone):
        errors["phone"] = "Valid 10-digit mobile number required"
    errors.update(address_errors(data.address))

    # Guest checkout never needs a code; only account creation does
    if data.create_account:
        channel = data.verification_channel
        contact_field = CHANNEL_FIELDS.get(channel)
        if contact_field is None:
            errors["verification"] = "Choose email or WhatsApp verification"
        else:
            identifier = getattr(data, contact_field)
            if contact_field == "email":
                identifier = identifier.lower()
            if not identifier or verified.get(channel) != identifier:
                errors["verification"] = f"Verify your {contact_field} before creating an account"
    return errors


def _edit(data, event):
    changes = {}
    for name in ("name", "email", "phone", "verification_channel"):
        value = getattr(event, name)
        if value is not None:
            changes[name] = value.strip()
    if event.create_account is not None:
        changes["create_account"] = bool(event.create_account)
    if event.address is not None:
        merged = dict(data.address)
        merged.update(event.address)
        changes["address"] = normalize_address(merged)
        # A changed address invalidates any earlier serviceability answer
        if changes["address"] != data.address:
            changes["delivery"] = None
            changes["delivery_error"] = None
    return replace(data, **changes)


def _with_data(state, data):
    return replace(state, data=data)


def _apply_shared(state, event):
    """Events accepted on any step before completion. Returns None if not shared."""
    data = state.data
    locked = isinstance(state, Payment) and state.in_flight

    if isinstance(event, DeliveryChecked):
        return _with_data(state, replace(data, delivery=dict(event.quote), delivery_error=None))
    if isinstance(event, DeliveryFailed):
        # Informational only: never blocks progression
        return _with_data(state, replace(data, delivery=None, delivery_error=event.message))
    if isinstance(event, CouponApplied):
        if locked:
            raise FlowError("Payment in progress")
        if data.coupon is not None:
            raise FlowError("Remove the applied coupon before selecting another one")
        coupon = {
            "code": event.code,
            "discountAmount": event.discount_amount,
            "finalTotal": event.final_total,
        }
        return _with_data(state, replace(data, coupon=coupon))
    if isinstance(event, CouponRemoved):
        if locked:
            raise FlowError("Payment in progress")
        return _with_data(state, replace(data, coupon=None))
    return None


def reduce(state, event):
    if isinstance(event, Restart):
        return Information()

    if isinstance(state, Completed):
        raise FlowError("Checkout already completed")

    shared = _apply_shared(state, event)
    if shared is not None:
        return shared

    if isinstance(state, Information):
        return _reduce_information(state, event)
    if isinstance(state, Shipping):
        return _reduce_shipping(state, event)
    if isinstance(state, Payment):
        return _reduce_payment(state, event)
    raise FlowError(f"Unknown checkout state {state!r}")


def _reduce_information(state, event):
    if isinstance(event, EditDetails):
        return Information(data=_edit(state.data, event))
    if isinstance(event, SubmitInformation):
        errors = information_errors(state.data, event.verified)
        if errors:
            raise FlowError("Please correct the highlighted fields", fields=errors)
        return Shipping(data=state.data)
    if isinstance(event, Back):
        return state
    raise FlowError(f"{type(event).__name__} is not allowed on the information step")


def _reduce_shipping(state, event):
    if isinstance(event, Back):
        return Information(data=state.data)
    if isinstance(event, SubmitShipping):
        if event.cart_size < 1:
            raise FlowError("Your cart is empty")
        return Payment(data=state.data, cod_advance_amount=event.cod_advance_amount)
    raise FlowError(f"{type(event).__name__} is not allowed on the shipping step")


def _reduce_payment(state, event):
    data = state.data

    if isinstance(event, Back):
        return Shipping(data=data)

    if isinstance(event, SelectPaymentMethod):
        if state.in_flight:
            raise FlowError("Payment in progress")
        if event.method not in PAYMENT_METHODS:
            raise FlowError(f"Unsupported payment method: {event.method}")
        return replace(state, data=replace(data, payment_method=event.method), error=None)

    if isinstance(event, StartPayment):
        if state.in_flight:
            raise FlowError("Payment in progress")
        if event.purpose == PURPOSE_ONLINE and data.payment_method != METHOD_ONLINE:
            raise FlowError("Online payment is not selected")
        if event.purpose == PURPOSE_COD_ADVANCE:
            if data.payment_method != METHOD_COD or state.cod_advance_amount is None:
                raise FlowError("No COD advance is required")
            if state.advance_reference:
                raise FlowError("COD advance already paid")
        return replace(state, in_flight=True, error=None)

    if isinstance(event, PaymentCancelled):
        return replace(state, in_flight=False, error=ERROR_CANCELLED)

    if isinstance(event, PaymentRejected):
        return replace(state, in_flight=False, error=ERROR_VERIFICATION_FAILED)

    if isinstance(event, AdvancePaid):
        return replace(state, in_flight=False, advance_reference=event.reference, error=None)

    if isinstance(event, PlaceOrder):
        if data.payment_method == METHOD_COD:
            if state.cod_advance_amount is not None and not state.advance_reference:
                raise FlowError("Pay the COD advance before placing the order")
            return replace(state, in_flight=True, error=None)
        if not event.payment_reference:
            raise FlowError("Complete the online payment first")
        return replace(state, in_flight=True, payment_reference=event.payment_reference, error=None)

    if isinstance(event, OrderFailed):
        captured = state.payment_reference or state.advance_reference
        return replace(state, in_flight=False, error=ERROR_NOT_CONFIRMED if captured else ERROR_ORDER_FAILED)

    if isinstance(event, OrderConfirmed):
        return Completed(data=data, order_number=event.order_number)

    raise FlowError(f"{type(event).__name__} is not allowed on the payment step")


# ---------- session persistence ----------

SESSION_KEY = "checkout_flow"
STATE_TYPES = {cls.step: cls for cls in (Information, Shipping, Payment, Completed)}


def state_to_dict(state):
    body = asdict(state)
    body["step"] = state.step
    return body


def state_from_dict(body):
    cls = STATE_TYPES.get(body.get("step"))
    if cls is None:
        return Information()
    known = {f.name for f in fields(CheckoutData)}
    data = CheckoutData(**{k: v for k, v in body.get("data", {}).items() if k in known})
    kwargs = {f.name: body[f.name] for f in fields(cls) if f.name in body and f.name != "data"}
    return cls(data=data, **kwargs)


def load_state(session):
    body = session.get(SESSION_KEY)
    return state_from_dict(body) if body else Information()


def save_state(session, state):
    session[SESSION_KEY] = state_to_dict(state)
    session.modified = True


def dispatch(session, event):
    """Apply ``event`` to the session's wizard and persist the new state."""
    state = reduce(load_state(session), event)
    save_state(session, state)
    return state


def has_state(session):
    return SESSION_KEY in session
