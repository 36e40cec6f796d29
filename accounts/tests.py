import json
from datetime import timedelta
from unittest import mock

from django.contrib.auth import get_user_model
from django.contrib.auth.hashers import check_password
from django.contrib.auth.models import AnonymousUser
from django.core import mail
from django.test import RequestFactory, TestCase, override_settings
from django.utils import timezone

from storefront.exceptions import (
    CooldownActive,
    ExternalServiceError,
    NotFound,
    RateLimited,
    ValidationFailed,
)

from . import otp
from .identity import Identity, resolve_identity, upsert_guest
from .models import GuestUser, OTPRecord


@mock.patch("accounts.otp.generate_otp", return_value="123456")
class SendOTPTests(TestCase):

    def test_email_code_is_sent_and_stored_hashed(self, _):
        result = otp.send_otp("email", "  Asha@Example.com ", "10.0.0.1")

        self.assertEqual(result, {"sent": True, "cooldownSeconds": 30})
        record = OTPRecord.objects.get()
        self.assertEqual(record.identifier, "asha@example.com")
        self.assertNotEqual(record.otp_hash, "123456")
        self.assertTrue(check_password("123456", record.otp_hash))
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn("123456", mail.outbox[0].body)

    def test_invalid_identifiers_are_rejected(self, _):
        with self.assertRaises(ValidationFailed):
            otp.send_otp("email", "not-an-email", "10.0.0.1")
        with self.assertRaises(ValidationFailed):
            otp.send_otp("whatsapp", "12345", "10.0.0.1")
        with self.assertRaises(ValidationFailed):
            otp.send_otp("sms", "9876543210", "10.0.0.1")
        self.assertFalse(OTPRecord.objects.exists())

    def test_fourth_request_from_one_ip_is_rate_limited(self, _):
        for i in range(3):
            otp.send_otp("email", f"user{i}@example.com", "10.0.0.1")

        with self.assertRaises(RateLimited) as ctx:
            otp.send_otp("email", "user9@example.com", "10.0.0.1")
        self.assertEqual(ctx.exception.status, 429)
        self.assertEqual(OTPRecord.objects.count(), 3)

        # Another address is unaffected
        otp.send_otp("email", "user9@example.com", "10.0.0.2")

    def test_rate_limit_window_expires(self, _):
        start = timezone.now()
        for i in range(3):
            otp.send_otp("email", f"user{i}@example.com", "10.0.0.1", now=start)
        otp.send_otp("email", "late@example.com", "10.0.0.1", now=start + timedelta(minutes=16))

    def test_resend_within_cooldown_reports_seconds_left(self, _):
        start = timezone.now()
        otp.send_otp("email", "asha@example.com", "10.0.0.1", now=start)

        with self.assertRaises(CooldownActive) as ctx:
            otp.send_otp("email", "asha@example.com", "10.0.0.2", now=start + timedelta(seconds=10))
        self.assertEqual(ctx.exception.extra["retryAfter"], 20)
        self.assertEqual(OTPRecord.objects.count(), 1)

    def test_resend_supersedes_previous_code(self, _):
        start = timezone.now()
        otp.send_otp("email", "asha@example.com", "10.0.0.1", now=start)
        otp.send_otp("email", "asha@example.com", "10.0.0.1", now=start + timedelta(seconds=31))

        live = OTPRecord.objects.filter(identifier="asha@example.com", verified=False)
        self.assertEqual(live.count(), 1)
        self.assertEqual(OTPRecord.objects.count(), 2)

    def test_failed_delivery_discards_the_code(self, _):
        sender = mock.Mock(return_value=(False, "SMTP unavailable"))
        with mock.patch.dict(otp.SENDERS, {"email": sender}):
            with self.assertRaises(ExternalServiceError):
                otp.send_otp("email", "asha@example.com", "10.0.0.1")
        self.assertFalse(OTPRecord.objects.exists())

    @override_settings(WHATSAPP_PHONE_NUMBER_ID="10001", WHATSAPP_ACCESS_TOKEN="wa-token")
    @mock.patch("accounts.messaging.requests.post")
    def test_whatsapp_code_goes_through_cloud_api(self, mock_post, _):
        mock_post.return_value.json.return_value = {"messages": [{"id": "wamid.1"}]}
        mock_post.return_value.raise_for_status.return_value = None

        otp.send_otp("whatsapp", "9876543210", "10.0.0.1")

        payload = mock_post.call_args.kwargs["json"]
        self.assertEqual(payload["to"], "919876543210")
        self.assertIn("123456", payload["text"]["body"])
        self.assertEqual(mock_post.call_args.kwargs["headers"]["Authorization"], "Bearer wa-token")


@mock.patch("accounts.otp.generate_otp", return_value="123456")
class VerifyOTPTests(TestCase):

    def setUp(self):
        self.start = timezone.now()

    def send(self, *_):
        otp.send_otp("email", "asha@example.com", "10.0.0.1", now=self.start)

    def test_correct_code_verifies_once(self, _):
        self.send()
        self.assertEqual(otp.verify_otp("email", "ASHA@example.com", "123456"), {"verified": True})

        with self.assertRaises(NotFound):
            otp.verify_otp("email", "asha@example.com", "123456")

    def test_wrong_codes_count_down_then_lock(self, _):
        self.send()

        remaining = []
        for _attempt in range(2):
            with self.assertRaises(ValidationFailed) as ctx:
                otp.verify_otp("email", "asha@example.com", "000000")
            self.assertEqual(ctx.exception.code, "otp_invalid")
            remaining.append(ctx.exception.extra["remainingAttempts"])
        self.assertEqual(remaining, [2, 1])

        with self.assertRaises(ValidationFailed) as ctx:
            otp.verify_otp("email", "asha@example.com", "000000")
        self.assertEqual(ctx.exception.code, "otp_attempts_exhausted")

        # Even the right code fails now
        with self.assertRaises(NotFound):
            otp.verify_otp("email", "asha@example.com", "123456")

    def test_expired_code_is_invalidated(self, _):
        self.send()
        later = self.start + timedelta(seconds=301)

        with self.assertRaises(ValidationFailed) as ctx:
            otp.verify_otp("email", "asha@example.com", "123456", now=later)
        self.assertEqual(ctx.exception.code, "otp_expired")
        self.assertTrue(OTPRecord.objects.get().verified)

    def test_malformed_code_does_not_burn_an_attempt(self, _):
        self.send()
        with self.assertRaises(ValidationFailed):
            otp.verify_otp("email", "asha@example.com", "12ab")
        self.assertEqual(OTPRecord.objects.get().attempts, 0)


@mock.patch("accounts.otp.generate_otp", return_value="123456")
class VerificationViewTests(TestCase):

    def post(self, url, data):
        return self.client.post(url, json.dumps(data), content_type="application/json")

    def verify_email(self, email="asha@example.com"):
        self.post("/api/auth/otp/send/", {"channel": "email", "identifier": email})
        return self.post("/api/auth/otp/verify/", {"channel": "email", "identifier": email, "code": "123456"})

    def test_verify_records_channel_in_session(self, _):
        response = self.verify_email()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.session[otp.SESSION_KEY], {"email": "asha@example.com"})

    def test_wrong_code_returns_remaining_attempts(self, _):
        self.post("/api/auth/otp/send/", {"channel": "email", "identifier": "asha@example.com"})
        response = self.post(
            "/api/auth/otp/verify/", {"channel": "email", "identifier": "asha@example.com", "code": "999999"}
        )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["remainingAttempts"], 2)
        self.assertNotIn(otp.SESSION_KEY, self.client.session)

    def test_cooldown_is_429(self, _):
        self.post("/api/auth/otp/send/", {"channel": "email", "identifier": "asha@example.com"})
        response = self.post("/api/auth/otp/send/", {"channel": "email", "identifier": "asha@example.com"})

        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.json()["code"], "cooldown_active")

    def test_register_requires_verified_channel(self, _):
        response = self.post("/api/auth/register/", {
            "name": "Asha",
            "email": "asha@example.com",
            "password": "Kurta-Season-2024",
        })

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "verification_required")
        self.assertFalse(get_user_model().objects.exists())

    def test_register_after_verification_logs_in(self, _):
        self.verify_email()
        response = self.post("/api/auth/register/", {
            "name": "Asha",
            "email": "asha@example.com",
            "phone": "9876543210",
            "password": "Kurta-Season-2024",
        })

        self.assertEqual(response.status_code, 200)
        user = get_user_model().objects.get(email="asha@example.com")
        self.assertTrue(user.profile.email_verified)
        self.assertEqual(self.client.session["_auth_user_id"], str(user.pk))
        # Verification is spent
        self.assertNotIn("email", self.client.session.get(otp.SESSION_KEY, {}))

        me = self.client.get("/api/auth/me/").json()
        self.assertEqual(me["user"]["email"], "asha@example.com")

    def test_register_for_a_different_email_is_rejected(self, _):
        self.verify_email("asha@example.com")
        response = self.post("/api/auth/register/", {
            "name": "Ravi",
            "email": "ravi@example.com",
            "password": "Kurta-Season-2024",
        })
        self.assertEqual(response.status_code, 403)


class IdentityTests(TestCase):

    def setUp(self):
        self.factory = RequestFactory()

    def anonymous_request(self):
        request = self.factory.post("/api/orders/create/")
        request.user = AnonymousUser()
        return request

    def test_upsert_is_keyed_by_session_id(self):
        first = upsert_guest("sess-1", name="Asha", email="ASHA@example.com", phone="9876543210")
        second = upsert_guest("sess-1", name="Asha Rao", email="asha@example.com", phone="9876543210")

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(GuestUser.objects.count(), 1)
        guest = GuestUser.objects.get()
        self.assertEqual(guest.name, "Asha Rao")
        self.assertEqual(guest.email, "asha@example.com")
        self.assertEqual(guest.shipping_address["fullName"], "Asha Rao")

    def test_upsert_requires_session_id(self):
        with self.assertRaises(ValidationFailed):
            upsert_guest("   ")

    def test_signed_in_user_wins(self):
        user = get_user_model().objects.create_user("asha", "asha@example.com", "pw")
        request = self.factory.post("/api/orders/create/")
        request.user = user

        identity = resolve_identity(request, guest_user_id="999")
        self.assertEqual(identity, Identity(user=user))
        self.assertFalse(identity.is_guest)

    def test_guest_identity_is_resolved(self):
        guest = upsert_guest("sess-1", email="asha@example.com")
        identity = resolve_identity(self.anonymous_request(), guest_user_id=str(guest.pk))

        self.assertTrue(identity.is_guest)
        self.assertEqual(identity.email, "asha@example.com")

    def test_missing_or_unknown_guest(self):
        with self.assertRaises(ValidationFailed):
            resolve_identity(self.anonymous_request())
        with self.assertRaises(ValidationFailed):
            resolve_identity(self.anonymous_request(), guest_user_id="abc")
        with self.assertRaises(NotFound):
            resolve_identity(self.anonymous_request(), guest_user_id="4242")

    def test_guest_checkout_endpoint(self):
        response = self.client.post(
            "/api/checkout/guest/",
            json.dumps({"guestSessionId": "sess-9", "name": "Asha", "email": "asha@example.com"}),
            content_type="application/json",
        )

        self.assertEqual(response.status_code, 200)
        guest = GuestUser.objects.get(guest_session_id="sess-9")
        self.assertEqual(response.json()["guestUserId"], str(guest.pk))
