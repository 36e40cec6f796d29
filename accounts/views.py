import logging

from django.contrib.auth import get_user_model, login
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.views.decorators.http import require_GET, require_POST

from storefront.api import get_client_ip, json_view
from storefront.exceptions import Conflict, ValidationFailed
from storefront.validators import validate_email, validate_phone_number

from . import otp
from .identity import upsert_guest
from .models import CustomerProfile

logger = logging.getLogger(__name__)

# ==================== VERIFICATION GATE ====================

@require_POST
@json_view
def send_otp(request):
    data = request.json
    channel = data.get("channel", otp.CHANNEL_EMAIL)
    identifier = data.get("identifier") or data.get("email") or data.get("phone")
    result = otp.send_otp(channel, identifier, get_client_ip(request))
    return {"success": True, "message": "Verification code sent", **result}


@require_POST
@json_view
def verify_otp(request):
    data = request.json
    channel = data.get("channel", otp.CHANNEL_EMAIL)
    identifier = otp.normalize_identifier(
        channel, data.get("identifier") or data.get("email") or data.get("phone")
    )
    result = otp.verify_otp(channel, identifier, data.get("code") or data.get("otp"))
    otp.mark_verified(request.session, channel, identifier)
    return {"success": True, "message": "OTP verified successfully", **result}

# ==================== ACCOUNT CREATION ====================

@require_POST
@json_view
def register(request):
    """Create an account; the chosen channel must have passed OTP verification."""
    data = request.json
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    phone = (data.get("phone") or "").strip()
    password = data.get("password") or ""
    channel = data.get("channel", otp.CHANNEL_EMAIL)

    if not name:
        raise ValidationFailed("name is required", fields={"name": "required"})
    if not validate_email(email):
        raise ValidationFailed("Valid email address required", fields={"email": "invalid"})
    if phone and not validate_phone_number(phone):
        raise ValidationFailed("Invalid mobile number", fields={"phone": "invalid"})

    identifier = email if channel == otp.CHANNEL_EMAIL else phone
    if not otp.is_verified(request.session, channel, identifier):
        raise ValidationFailed(
            f"Verify your {'email' if channel == otp.CHANNEL_EMAIL else 'phone'} before creating an account",
            code="verification_required",
            status=403,
        )

    User = get_user_model()
    candidate = User(username=email, email=email, first_name=name)
    try:
        validate_password(password, user=candidate)
    except ValidationError as e:
        raise ValidationFailed(" ".join(e.messages), fields={"password": e.messages})

    if User.objects.filter(username=email).exists():
        raise Conflict("An account with this email already exists", code="account_exists")

    try:
        with transaction.atomic():
            user = User.objects.create_user(username=email, email=email, password=password, first_name=name)
            CustomerProfile.objects.create(
                user=user,
                phone=phone,
                email_verified=channel == otp.CHANNEL_EMAIL,
                phone_verified=channel == otp.CHANNEL_WHATSAPP,
            )
    except IntegrityError:
        raise Conflict("An account with this email already exists", code="account_exists")

    otp.clear_verified(request.session, channel)
    login(request, user)
    logger.info(f"Account created for {email} via {channel} verification")
    return {"success": True, "userId": str(user.pk)}


@require_GET
@json_view
def me(request):
    if not request.user.is_authenticated:
        return {"success": True, "user": None}
    user = request.user
    profile = getattr(user, "profile", None)
    return {
        "success": True,
        "user": {
            "id": str(user.pk),
            "name": user.first_name,
            "email": user.email,
            "phone": profile.phone if profile else "",
        },
    }

# ==================== GUEST IDENTITY ====================

@require_POST
@json_view
def guest_checkout(request):
    """Upsert the guest record for this client session."""
    data = request.json
    guest = upsert_guest(
        data.get("guestSessionId"),
        name=data.get("name"),
        email=data.get("email"),
        phone=data.get("phone"),
        shipping_address=data.get("shippingAddress"),
    )
    return {"success": True, "guestUserId": str(guest.pk)}
