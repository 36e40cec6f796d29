"""
Error taxonomy shared by every JSON endpoint.

Each error carries the HTTP status and a short machine code so callers can tell
a retryable failure from an already-succeeded one (``duplicate_order``) or from
a money-at-risk state (``payment_not_confirmed``).
"""


class StoreError(Exception):
    status = 400
    code = "bad_request"

    def __init__(self, message, code=None, status=None, **extra):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status:
            self.status = status
        self.extra = extra

    def as_dict(self):
        body = {"success": False, "error": self.message, "code": self.code}
        body.update(self.extra)
        return body


class ValidationFailed(StoreError):
    code = "validation_failed"

    def __init__(self, message, fields=None, **extra):
        if fields:
            extra["fields"] = fields
        super().__init__(message, **extra)


class NotFound(StoreError):
    status = 404
    code = "not_found"


class RateLimited(StoreError):
    status = 429
    code = "rate_limited"


class CooldownActive(StoreError):
    status = 429
    code = "cooldown_active"


class Conflict(StoreError):
    status = 409
    code = "conflict"


class DuplicateOrder(Conflict):
    code = "duplicate_order"


class CouponRejected(StoreError):
    code = "coupon_rejected"


class ExternalServiceError(StoreError):
    status = 502
    code = "external_service_error"


class PaymentVerificationFailed(StoreError):
    code = "payment_verification_failed"


class PaymentNotConfirmed(StoreError):
    """Payment was captured by the gateway but no order could be written."""

    status = 409
    code = "payment_not_confirmed"


class FlowError(StoreError):
    code = "transition_rejected"
