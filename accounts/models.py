# accounts/models.py
from django.conf import settings
from django.db import models
from django.utils import timezone


class GuestUser(models.Model):
    """One record per client checkout session, upserted on every attempt."""

    guest_session_id = models.CharField(max_length=100, unique=True)
    name = models.CharField(max_length=200, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    phone = models.CharField(max_length=20, blank=True, default="")
    shipping_address = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Guest #{self.id} - {self.name or self.email or self.phone}"


class CustomerProfile(models.Model):
    user = models.OneToOneField(settings.AUTH_USER_MODEL, related_name="profile", on_delete=models.CASCADE)
    phone = models.CharField(max_length=20, blank=True, default="")
    email_verified = models.BooleanField(default=False)
    phone_verified = models.BooleanField(default=False)

    def __str__(self):
        return f"Profile of {self.user}"


class OTPRecord(models.Model):
    CHANNEL_CHOICES = [
        ("email", "Email"),
        ("whatsapp", "WhatsApp"),
    ]

    # phone for WhatsApp, email for Email
    identifier = models.CharField(max_length=255, db_index=True)
    channel = models.CharField(max_length=20, choices=CHANNEL_CHOICES)
    otp_hash = models.CharField(max_length=255)
    expires_at = models.DateTimeField()
    attempts = models.PositiveSmallIntegerField(default=0)
    # True once used up: verified, expired, exhausted or superseded
    verified = models.BooleanField(default=False)
    ip_address = models.CharField(max_length=64, blank=True, default="")
    last_sent_at = models.DateTimeField(default=timezone.now)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        indexes = [
            models.Index(fields=["identifier", "channel", "verified"], name="otp_identifier_lookup_idx"),
            models.Index(fields=["ip_address", "created_at"], name="otp_ip_created_idx"),
        ]

    def invalidate(self):
        self.verified = True
        self.save(update_fields=["verified"])

    def __str__(self):
        return f"OTP {self.channel}:{self.identifier}"
