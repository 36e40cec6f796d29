import hmac
import logging
from functools import wraps

from django.conf import settings
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from accounts.identity import resolve_identity
from accounts.otp import SESSION_KEY as OTP_SESSION_KEY
from catalog.models import Product
from storefront.api import json_view
from storefront.exceptions import (
    DuplicateOrder,
    ExternalServiceError,
    FlowError,
    NotFound,
    PaymentVerificationFailed,
    StoreError,
    ValidationFailed,
)

from . import flow
from .cart import CartItem, session_cart
from .coupons import active_coupons, apply_coupon
from .delivery import check_delivery
from .models import StoreSettings
from .orders import create_order, get_order_for_request, quote_order, remember_order, reprice_items
from .payments import (
    PURPOSE_COD_ADVANCE,
    PURPOSE_ONLINE,
    create_gateway_order,
    handle_webhook_event,
    verify_payment,
    verify_webhook_signature,
)
from .pricing import line_subtotal
from .shipments import apply_tracking_update, create_shipment, update_order_status

logger = logging.getLogger(__name__)

# ==================== HELPERS ====================

def staff_required(view):
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        if not request.user.is_authenticated or not request.user.is_staff:
            raise StoreError("Staff access required", code="forbidden", status=403)
        return view(request, *args, **kwargs)
    return wrapper


def _current_user(request):
    return request.user if request.user.is_authenticated else None


def _submitted_items(request, data):
    """Items from the request body, falling back to the session cart."""
    items = data.get("items")
    if items:
        return items
    return [item.to_dict() for item in session_cart(request).items]


def _active_state(session):
    if not flow.has_state(session):
        return None
    state = flow.load_state(session)
    return None if isinstance(state, flow.Completed) else state


def _dispatch_if_active(session, event):
    if _active_state(session) is not None:
        return flow.dispatch(session, event)
    return None


def _dispatch_if_paying(session, event):
    if isinstance(_active_state(session), flow.Payment):
        return flow.dispatch(session, event)
    return None

# ==================== CART API ====================

@require_GET
@json_view
def cart_detail(request):
    return {"success": True, **session_cart(request).to_dict()}


@require_POST
@json_view
def cart_add(request):
    """Add a product variant; name and price come from the catalog"""
    data = request.json
    try:
        product = Product.objects.get(pk=int(data.get("productId")), is_active=True)
        quantity = int(data.get("quantity", 1))
    except (TypeError, ValueError):
        raise ValidationFailed("Invalid product or quantity")
    except Product.DoesNotExist:
        raise NotFound("Product not found")

    cart = session_cart(request)
    cart.add(CartItem(
        product_id=str(product.pk),
        name=product.name,
        unit_price=product.price,
        quantity=quantity,
        image=product.image_url,
        size=str(data.get("size") or ""),
        color=str(data.get("color") or ""),
    ))
    return {"success": True, **cart.to_dict()}


@require_POST
@json_view
def cart_update(request):
    data = request.json
    key = data.get("key")
    if not key:
        raise ValidationFailed("No key provided")
    try:
        quantity = int(data.get("quantity", 1))
    except (TypeError, ValueError):
        raise ValidationFailed("Invalid quantity")
    cart = session_cart(request)
    cart.update_quantity(key, quantity)
    return {"success": True, **cart.to_dict()}


@require_POST
@json_view
def cart_remove(request):
    key = request.json.get("key")
    if not key:
        raise ValidationFailed("No key provided")
    cart = session_cart(request)
    cart.remove(key)
    return {"success": True, **cart.to_dict()}


@require_POST
@json_view
def cart_clear(request):
    cart = session_cart(request)
    cart.clear()
    return {"success": True, **cart.to_dict()}

# ==================== CHECKOUT WIZARD ====================

def _text(data, name):
    value = data.get(name)
    return value if isinstance(value, str) else None


def _build_event(request, data):
    kind = data.get("type")
    session = request.session

    if kind == "edit":
        create_account = data.get("createAccount")
        address = data.get("address")
        return flow.EditDetails(
            name=_text(data, "name"),
            email=_text(data, "email"),
            phone=_text(data, "phone"),
            address=address if isinstance(address, dict) else None,
            create_account=bool(create_account) if create_account is not None else None,
            verification_channel=_text(data, "verificationChannel"),
        )
    if kind == "next":
        state = flow.load_state(session)
        if isinstance(state, flow.Information):
            return flow.SubmitInformation(verified=dict(session.get(OTP_SESSION_KEY, {})))
        if isinstance(state, flow.Shipping):
            advance = StoreSettings.get_settings().cod_advance
            return flow.SubmitShipping(
                cart_size=session_cart(request).count(),
                cod_advance_amount=str(advance) if advance is not None else None,
            )
        raise FlowError("Nothing to submit on this step")
    if kind == "back":
        return flow.Back()
    if kind == "select_payment_method":
        return flow.SelectPaymentMethod(method=str(data.get("method") or ""))
    if kind == "payment_cancelled":
        return flow.PaymentCancelled()
    if kind == "restart":
        return flow.Restart()
    raise ValidationFailed(f"Unknown checkout event: {kind}")


@require_GET
@json_view
def checkout_state(request):
    state = flow.load_state(request.session)
    return {"success": True, "state": flow.state_to_dict(state)}


@require_POST
@json_view
def checkout_event(request):
    event = _build_event(request, request.json)
    state = flow.dispatch(request.session, event)
    return {"success": True, "state": flow.state_to_dict(state)}

# ==================== DELIVERY CHECK ====================

@require_POST
@json_view
def delivery_check(request):
    """Serviceability lookup; partner failures are reported, not fatal"""
    data = request.json
    address = data.get("address") or data.get("shippingAddress")
    items = _submitted_items(request, data)
    try:
        quote = check_delivery(address, items)
    except ExternalServiceError as e:
        logger.warning(f"Delivery check failed: {e.message}")
        _dispatch_if_active(request.session, flow.DeliveryFailed(message=e.message))
        return {"success": False, "error": e.message, "code": e.code, "blocking": False}

    _dispatch_if_active(request.session, flow.DeliveryChecked(quote=quote.to_dict()))
    return {"success": True, **quote.to_dict()}

# ==================== COUPONS ====================

@require_POST
@json_view
def coupon_apply(request):
    data = request.json
    items = _submitted_items(request, data)
    if items:
        subtotal = line_subtotal(reprice_items(items))
    elif data.get("subtotal") is not None:
        subtotal = data.get("subtotal")
    else:
        raise ValidationFailed("Cart is empty")

    try:
        result = apply_coupon(data.get("code"), subtotal, user=_current_user(request))
    except ValueError:
        raise ValidationFailed("Invalid subtotal")

    _dispatch_if_active(request.session, flow.CouponApplied(
        code=result.code,
        discount_amount=str(result.discount_amount),
        final_total=str(result.final_total),
    ))
    return result.to_dict()


@require_POST
@json_view
def coupon_remove(request):
    _dispatch_if_active(request.session, flow.CouponRemoved())
    return {"success": True}


@require_GET
@json_view
def coupon_active(request):
    coupons = active_coupons(user=_current_user(request))
    return {"success": True, "coupons": [coupon.to_dict() for coupon in coupons]}

# ==================== PAYMENTS ====================

@require_POST
@json_view
def payment_create_order(request):
    """Reserve a gateway order; the amount is always computed here"""
    data = request.json
    purpose = data.get("purpose", PURPOSE_ONLINE)

    amount = None
    if purpose == PURPOSE_ONLINE:
        quote = quote_order(_submitted_items(request, data), data.get("couponCode"), user=_current_user(request))
        amount = quote.pricing.total

    # Reject before anything is created if the wizard is not ready to pay
    next_state = None
    state = _active_state(request.session)
    if state is not None:
        next_state = flow.reduce(state, flow.StartPayment(purpose=purpose))

    gateway_order = create_gateway_order(purpose, amount)
    if next_state is not None:
        flow.save_state(request.session, next_state)

    return {
        "success": True,
        "orderId": gateway_order.gateway_order_id,
        "amount": gateway_order.amount_minor,
        "currency": gateway_order.currency,
        "purpose": purpose,
        "keyId": settings.RAZORPAY_KEY_ID,
    }


@require_POST
@json_view
def payment_verify(request):
    """Verify a popup callback; a verified COD advance unlocks order placement"""
    data = request.json
    purpose = data.get("purpose", PURPOSE_COD_ADVANCE)
    try:
        payment = verify_payment(purpose, data)
    except PaymentVerificationFailed:
        _dispatch_if_paying(request.session, flow.PaymentRejected())
        raise

    if purpose == PURPOSE_COD_ADVANCE:
        _dispatch_if_paying(request.session, flow.AdvancePaid(reference=payment.payment_id))
    return {"success": True, "verified": True, "paymentId": payment.payment_id}


@csrf_exempt
@require_POST
@json_view
def payment_webhook(request):
    """Handle Razorpay webhook with signature check and idempotency"""
    signature = request.headers.get("X-Razorpay-Signature", "")
    if not verify_webhook_signature(request.body, signature):
        logger.warning("Invalid Razorpay webhook signature")
        return JsonResponse({"success": False, "error": "Invalid signature", "code": "unauthorized"}, status=401)
    return {"success": True, **handle_webhook_event(request.json)}

# ==================== ORDERS ====================

@require_POST
@json_view
def order_create(request):
    data = dict(request.json)
    session = request.session
    identity = resolve_identity(request, data.get("guestUserId"))
    data["items"] = _submitted_items(request, data)
    method = data.get("paymentMethod", flow.METHOD_ONLINE)

    state = _active_state(session)
    paying = isinstance(state, flow.Payment)
    if paying and state.data.payment_method != method:
        raise FlowError("Payment method does not match the checkout")

    payment = advance = None
    try:
        if method == flow.METHOD_ONLINE:
            payment = verify_payment(PURPOSE_ONLINE, data.get("payment"))
        elif data.get("advancePayment"):
            advance = verify_payment(PURPOSE_COD_ADVANCE, data.get("advancePayment"))
    except PaymentVerificationFailed:
        if paying:
            flow.dispatch(session, flow.PaymentRejected())
        raise

    if paying:
        if advance is not None and not state.advance_reference:
            flow.dispatch(session, flow.AdvancePaid(reference=advance.payment_id))
        flow.dispatch(session, flow.PlaceOrder(payment_reference=payment.payment_id if payment else None))

    try:
        order = create_order(data, identity, payment=payment, advance_payment=advance)
    except DuplicateOrder as e:
        if paying:
            flow.dispatch(session, flow.OrderConfirmed(order_number=e.extra["orderNumber"]))
        raise
    except Exception as e:
        if paying:
            flow.dispatch(session, flow.OrderFailed(message=str(e)))
        raise

    remember_order(session, order)
    session_cart(request).clear()
    if paying:
        flow.dispatch(session, flow.OrderConfirmed(order_number=order.order_number))

    return JsonResponse(
        {"success": True, "orderId": order.order_number, "order": order.to_dict()},
        status=201,
    )


@require_GET
@json_view
def order_detail(request, order_number):
    order = get_order_for_request(request, order_number)
    if order is None:
        raise NotFound("Order not found")
    return {"success": True, "order": order.to_dict()}

# ==================== ADMIN ORDER ACTIONS ====================

@require_POST
@json_view
@staff_required
def admin_order_status(request, order_number):
    status = request.json.get("status")
    if not status:
        raise ValidationFailed("status is required")
    order = update_order_status(order_number, status)
    return {"success": True, "order": order.to_dict()}


@require_POST
@json_view
@staff_required
def admin_create_shipment(request, order_number):
    order = create_shipment(order_number)
    return {"success": True, "order": order.to_dict()}

# ==================== SHIPPING WEBHOOK ====================

@csrf_exempt
@require_POST
@json_view
def delivery_webhook(request):
    """Handle shipping-partner status push with token check and idempotency"""
    incoming_token = request.headers.get("x-api-key", "")
    expected = settings.DELHIVERY_WEBHOOK_TOKEN or ""
    if not expected or not hmac.compare_digest(incoming_token.encode(), expected.encode()):
        logger.warning("Invalid delivery webhook token")
        return JsonResponse({"status": "unauthorized"}, status=401)

    order, changed = apply_tracking_update(request.json)
    return {"status": "success" if changed else "already processed", "orderNumber": order.order_number}
