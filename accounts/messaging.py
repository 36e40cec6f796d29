# accounts/messaging.py
import logging

import requests
from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)


def mask_otp(otp):
    """Only first and last digit survive in logs"""
    if not otp or len(otp) < 2:
        return "******"
    return f"{otp[0]}{'*' * (len(otp) - 2)}{otp[-1]}"


def send_email_otp(email, otp):
    """Send OTP to email using Django's email backend"""
    minutes = settings.OTP_EXPIRY_SECONDS // 60
    try:
        subject = 'Your SoulSeam Verification Code'

        message = f"""
Hello!

Your verification code for SoulSeam is:

{otp}

This code will expire in {minutes} minutes.

If you didn't request this, please ignore this email.

Best regards,
SoulSeam Team
        """.strip()

        send_mail(
            subject=subject,
            message=message,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[email],
            fail_silently=False,
        )

        logger.info(f"OTP sent to {email}")
        return True, "OTP sent successfully"

    except Exception as e:
        logger.error(f"Failed to send OTP to {email}: {str(e)}")
        return False, str(e)


def send_whatsapp_otp(phone, otp):
    """Send OTP through the WhatsApp Cloud API"""
    phone_number_id = settings.WHATSAPP_PHONE_NUMBER_ID
    access_token = settings.WHATSAPP_ACCESS_TOKEN
    minutes = settings.OTP_EXPIRY_SECONDS // 60

    if not phone_number_id or not access_token:
        if settings.DEBUG:
            logger.warning(f"[DEV] WhatsApp API not configured. OTP for +91{phone}: {otp}")
            return True, "OTP logged (development)"
        logger.error("WhatsApp API configuration missing: WHATSAPP_PHONE_NUMBER_ID or WHATSAPP_ACCESS_TOKEN not set")
        return False, "WhatsApp service is currently unavailable"

    url = f"https://graph.facebook.com/{settings.WHATSAPP_API_VERSION}/{phone_number_id}/messages"
    payload = {
        "messaging_product": "whatsapp",
        "to": f"91{phone}",
        "type": "text",
        "text": {
            "body": (
                f"Your SoulSeam verification code is {otp}. "
                f"This code is valid for {minutes} minutes. Do not share it with anyone."
            ),
        },
    }
    headers = {
        "Authorization": f"Bearer {access_token}",
        "Content-Type": "application/json",
    }

    try:
        response = requests.post(url, json=payload, headers=headers, timeout=10)
        response.raise_for_status()
        data = response.json()

        messages = data.get("messages") or []
        message_id = messages[0].get("id") if messages else None
        if not message_id:
            logger.error(f"WhatsApp API error: no message id in response {data}")
            return False, "Failed to send OTP"

        logger.info(f"WhatsApp OTP {mask_otp(otp)} sent to {phone}, message id {message_id}")
        return True, "OTP sent successfully"

    except requests.exceptions.RequestException as e:
        logger.error(f"WhatsApp OTP send error for {phone}: {str(e)}")
        return False, str(e)
