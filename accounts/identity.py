# accounts/identity.py
from dataclasses import dataclass
from typing import Optional

from storefront.exceptions import NotFound, ValidationFailed
from storefront.validators import normalize_address

from .models import GuestUser


@dataclass(frozen=True)
class Identity:
    """Who is checking out: a signed-in user or a guest record."""

    user: Optional[object] = None
    guest: Optional[GuestUser] = None

    @property
    def is_guest(self):
        return self.user is None

    @property
    def email(self):
        if self.user is not None:
            return self.user.email
        return self.guest.email if self.guest else ""


def upsert_guest(guest_session_id, name="", email="", phone="", shipping_address=None):
    """Create or refresh the guest record for a client session id."""
    guest_session_id = guest_session_id.strip() if isinstance(guest_session_id, str) else ""
    if not guest_session_id:
        raise ValidationFailed("guestSessionId required")

    name = name.strip() if isinstance(name, str) else ""
    email = email.strip().lower() if isinstance(email, str) else ""
    phone = phone.strip() if isinstance(phone, str) else ""

    address = normalize_address(shipping_address or {})
    address["fullName"] = address["fullName"] or name
    address["phone"] = address["phone"] or phone

    guest, _ = GuestUser.objects.update_or_create(
        guest_session_id=guest_session_id,
        defaults={
            "name": name,
            "email": email,
            "phone": phone,
            "shipping_address": address,
        },
    )
    return guest


def resolve_identity(request, guest_user_id=None):
    if request.user.is_authenticated:
        return Identity(user=request.user)

    if guest_user_id in (None, ""):
        raise ValidationFailed("userId or guestUserId required")

    try:
        pk = int(guest_user_id)
    except (TypeError, ValueError):
        raise ValidationFailed("Invalid guestUserId format")

    try:
        return Identity(guest=GuestUser.objects.get(pk=pk))
    except GuestUser.DoesNotExist:
        raise NotFound("Guest identity not found. Please restart checkout.")
