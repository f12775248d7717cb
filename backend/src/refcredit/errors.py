"""Error kinds and domain exceptions.

Domain exceptions are raised inside a transaction so the session rolls back,
then translated into a ``Result`` failure at the operation boundary.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Stable error identifiers surfaced to callers."""
    VALIDATION = "validation_error"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    INVALID_REFERRAL_CODE = "invalid_referral_code"
    SELF_REFERRAL = "self_referral"
    NOT_FOUND = "not_found"
    INVALID_OR_EXPIRED_TOKEN = "invalid_or_expired_token"
    EMAIL_TAKEN = "email_taken"
    CONFLICT = "conflict"
    NOTIFICATION_FAILED = "notification_failed"
    UNAVAILABLE = "unavailable"
    INTERNAL = "internal_error"


class DomainError(Exception):
    """Base class for business-rule failures."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InsufficientCreditsError(DomainError):
    """Raised when user has insufficient credits."""

    kind = ErrorKind.INSUFFICIENT_CREDITS

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(f"Insufficient credits: required {required}, available {available}")


class UserNotFoundError(DomainError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class InvalidResetTokenError(DomainError):
    """Token missing, already used, superseded or expired."""

    kind = ErrorKind.INVALID_OR_EXPIRED_TOKEN

    def __init__(self):
        super().__init__("Invalid or expired reset token")


class ReferralCodeExhaustedError(DomainError):
    """No free referral code was found within the attempt budget."""

    kind = ErrorKind.CONFLICT

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not allocate a unique referral code after {attempts} attempts")
