"""
Domain errors.

Every error carries a machine-readable ``kind`` (returned to clients as
``errorKind``), the HTTP status it renders with, and a message that is safe to
show to the end user.
"""
from typing import List, Optional


class MedVerifyError(Exception):
    kind = "InternalError"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidIdentifier(MedVerifyError):
    kind = "InvalidIdentifier"
    status_code = 400
    default_message = "Invalid phone number or email format"


class RateLimited(MedVerifyError):
    kind = "RateLimited"
    status_code = 429
    default_message = "Too many OTP requests. Please try again later."

    def __init__(self, message: Optional[str] = None, retry_after: int = 0):
        super().__init__(message)
        self.retry_after = retry_after


class InvalidOrExpired(MedVerifyError):
    kind = "InvalidOrExpired"
    status_code = 400
    default_message = "Invalid or expired OTP"


class ValidationError(MedVerifyError):
    kind = "ValidationError"
    status_code = 400
    default_message = "Invalid request"

    def __init__(self, message: Optional[str] = None, fields: Optional[List[str]] = None):
        self.fields = fields or []
        if message is None and self.fields:
            message = "Missing required fields: " + ", ".join(self.fields)
        super().__init__(message)


class MismatchError(MedVerifyError):
    kind = "MismatchError"
    status_code = 400
    default_message = "Passport number confirmation does not match"


class NotFound(MedVerifyError):
    kind = "NotFound"
    status_code = 404
    default_message = "Resource not found"


class Forbidden(MedVerifyError):
    # Rendered like NotFound at the HTTP boundary
    kind = "Forbidden"
    status_code = 403
    default_message = "Resource not found"


class InvalidState(MedVerifyError):
    kind = "InvalidState"
    status_code = 409
    default_message = "This appointment is not eligible for payment"


class ProviderError(MedVerifyError):
    kind = "ProviderError"
    status_code = 502
    default_message = "Payment provider unavailable. Please try again."


class SignatureInvalid(MedVerifyError):
    kind = "SignatureInvalid"
    status_code = 400
    default_message = "Payment verification failed"


class PersistenceError(MedVerifyError):
    kind = "PersistenceError"
    status_code = 500
    default_message = "Internal server error"


class DeliveryFailed(MedVerifyError):
    kind = "DeliveryFailed"
    status_code = 502
    default_message = "Failed to send OTP. Please try again."


class Unauthorized(MedVerifyError):
    kind = "Unauthorized"
    status_code = 401
    default_message = "Could not validate credentials"
