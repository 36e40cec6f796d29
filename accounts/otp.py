# accounts/otp.py
"""
Verification gate: one-time codes sent over email or WhatsApp.

At most one live challenge exists per (identifier, channel). Codes are hashed
with Django's password hasher and never stored in clear.
"""
import logging
import math
import re
import secrets
import string
from datetime import timedelta

from django.conf import settings
from django.contrib.auth.hashers import check_password, make_password
from django.db import transaction
from django.utils import timezone

from storefront.exceptions import (
    CooldownActive,
    ExternalServiceError,
    NotFound,
    RateLimited,
    ValidationFailed,
)
from storefront.validators import validate_email, validate_phone_number

from .messaging import send_email_otp, send_whatsapp_otp
from .models import OTPRecord

logger = logging.getLogger(__name__)

CHANNEL_EMAIL = "email"
CHANNEL_WHATSAPP = "whatsapp"
CHANNELS = (CHANNEL_EMAIL, CHANNEL_WHATSAPP)

SESSION_KEY = "otp_verified"

SENDERS = {
    CHANNEL_EMAIL: send_email_otp,
    CHANNEL_WHATSAPP: send_whatsapp_otp,
}


def generate_otp(length=None):
    """Cryptographically random numeric code"""
    length = length or settings.OTP_LENGTH
    return ''.join(secrets.choice(string.digits) for _ in range(length))


def normalize_identifier(channel, identifier):
    identifier = identifier.strip() if isinstance(identifier, str) else ""

    if channel == CHANNEL_EMAIL:
        identifier = identifier.lower()
        if not validate_email(identifier):
            raise ValidationFailed("Valid email address required", fields={"email": "invalid"})
    elif channel == CHANNEL_WHATSAPP:
        if not validate_phone_number(identifier):
            raise ValidationFailed("Valid 10-digit Indian phone number required", fields={"phone": "invalid"})
    else:
        raise ValidationFailed(f"Unsupported verification channel: {channel}")

    return identifier


def send_otp(channel, identifier, ip_address, now=None):
    """
    Issue a fresh code for ``identifier`` on ``channel``.

    Rejects with RateLimited after OTP_RATE_LIMIT_MAX_REQUESTS sends from one IP
    inside the window, and with CooldownActive when the previous send to the
    same identifier is younger than the resend cooldown. Neither path generates
    a code.
    """
    identifier = normalize_identifier(channel, identifier)
    now = now or timezone.now()

    window_start = now - timedelta(seconds=settings.OTP_RATE_LIMIT_WINDOW_SECONDS)
    recent_requests = OTPRecord.objects.filter(ip_address=ip_address, created_at__gte=window_start).count()
    if recent_requests >= settings.OTP_RATE_LIMIT_MAX_REQUESTS:
        logger.warning(f"OTP rate limit hit for IP {ip_address}")
        raise RateLimited("Too many requests. Please try again later.")

    cooldown = settings.OTP_RESEND_COOLDOWN_SECONDS
    last_otp = OTPRecord.objects.filter(identifier=identifier, channel=channel).order_by("-last_sent_at").first()
    if last_otp:
        elapsed = (now - last_otp.last_sent_at).total_seconds()
        if elapsed < cooldown:
            remaining = math.ceil(cooldown - elapsed)
            raise CooldownActive(
                f"Please wait {remaining} seconds before requesting a new OTP.",
                retryAfter=remaining,
            )

    otp = generate_otp()
    with transaction.atomic():
        # Supersede any live challenge for this identifier
        OTPRecord.objects.filter(identifier=identifier, channel=channel, verified=False).update(verified=True)
        record = OTPRecord.objects.create(
            identifier=identifier,
            channel=channel,
            otp_hash=make_password(otp),
            expires_at=now + timedelta(seconds=settings.OTP_EXPIRY_SECONDS),
            ip_address=ip_address or "",
            last_sent_at=now,
            created_at=now,
        )

    success, message = SENDERS[channel](identifier, otp)
    if not success:
        record.delete()
        raise ExternalServiceError("Failed to send OTP. Please try again.", detail=message)

    logger.info(f"OTP issued on {channel} for {identifier}")
    return {"sent": True, "cooldownSeconds": cooldown}


def verify_otp(channel, identifier, code, now=None):
    """
    Check ``code`` against the live challenge.

    A wrong code burns one attempt; the response carries the attempts left.
    Expiry or exhausting OTP_MAX_ATTEMPTS invalidates the record so even the
    right code fails afterwards.
    """
    identifier = normalize_identifier(channel, identifier)
    code = code.strip() if isinstance(code, str) else ""
    if not re.fullmatch(rf"\d{{{settings.OTP_LENGTH}}}", code):
        raise ValidationFailed(f"Valid {settings.OTP_LENGTH}-digit OTP required")

    now = now or timezone.now()
    max_attempts = settings.OTP_MAX_ATTEMPTS
    remaining = 0

    with transaction.atomic():
        record = (
            OTPRecord.objects.select_for_update()
            .filter(identifier=identifier, channel=channel, verified=False)
            .order_by("-created_at")
            .first()
        )

        if record is None:
            outcome = "missing"
        elif now >= record.expires_at:
            record.invalidate()
            outcome = "expired"
        elif record.attempts >= max_attempts:
            record.invalidate()
            outcome = "exhausted"
        elif check_password(code, record.otp_hash):
            record.invalidate()
            outcome = "verified"
        else:
            record.attempts += 1
            remaining = max_attempts - record.attempts
            if remaining <= 0:
                record.verified = True
            record.save(update_fields=["attempts", "verified"])
            outcome = "invalid" if remaining > 0 else "exhausted"

    if outcome == "missing":
        raise NotFound("OTP not found or already used. Please request a new OTP.")
    if outcome == "expired":
        raise ValidationFailed("OTP has expired. Please request a new OTP.", code="otp_expired")
    if outcome == "exhausted":
        raise ValidationFailed(
            "Maximum verification attempts exceeded. Please request a new OTP.",
            code="otp_attempts_exhausted",
            remainingAttempts=0,
        )
    if outcome == "invalid":
        raise ValidationFailed(
            f"Invalid OTP. {remaining} attempt(s) remaining.",
            code="otp_invalid",
            status=401,
            remainingAttempts=remaining,
        )

    logger.info(f"OTP verified on {channel} for {identifier}")
    return {"verified": True}


def mark_verified(session, channel, identifier):
    verified = dict(session.get(SESSION_KEY, {}))
    verified[channel] = identifier
    session[SESSION_KEY] = verified
    session.modified = True


def is_verified(session, channel, identifier):
    return bool(identifier) and session.get(SESSION_KEY, {}).get(channel) == identifier


def clear_verified(session, channel):
    verified = dict(session.get(SESSION_KEY, {}))
    if verified.pop(channel, None) is not None:
        session[SESSION_KEY] = verified
        session.modified = True
