"""Input validation run before any transaction begins.

Each ``validate_*`` function is pure and returns a list of field errors;
an empty list means the input is acceptable.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any

from email_validator import EmailNotValidError, validate_email

from refcredit.purchases.models import Currency
from refcredit.results import FieldError

MIN_PURCHASE_AMOUNT = Decimal("0.01")
MAX_PURCHASE_AMOUNT = Decimal("9999999999.99")
CENT = Decimal("0.01")
MAX_DESCRIPTION_LENGTH = 100
REFERRAL_CODE_PATTERN = re.compile(r"^[A-Za-z0-9]{6,10}$")


def validate_password_complexity(password: str) -> str:
    """Validate password meets security requirements."""
    if len(password) < 8:
        raise ValueError("Password must be at least 8 characters")
    if len(password) > 100:
        raise ValueError("Password must be at most 100 characters")
    if not re.search(r'[A-Z]', password):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r'[a-z]', password):
        raise ValueError("Password must contain at least one lowercase letter")
    if not re.search(r'[0-9]', password):
        raise ValueError("Password must contain at least one digit")
    if not re.search(r'[!@#$%^&*(),.?":{}|<>_\-+=\[\]\\;\'`~]', password):
        raise ValueError("Password must contain at least one special character")
    return password


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_referral_code(code: str) -> str:
    return code.strip().upper()


def validate_email_address(email: Any, field_name: str = "email") -> list[FieldError]:
    if not isinstance(email, str) or not email.strip():
        return [FieldError(field_name, "Email is required")]
    try:
        validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError:
        return [FieldError(field_name, "Please provide a valid email")]
    return []


def validate_new_password(password: Any, field_name: str = "password") -> list[FieldError]:
    if not isinstance(password, str):
        return [FieldError(field_name, "Password is required")]
    try:
        validate_password_complexity(password)
    except ValueError as e:
        return [FieldError(field_name, str(e))]
    return []


def _validate_name(value: Any, field_name: str, label: str) -> list[FieldError]:
    if not isinstance(value, str) or not 2 <= len(value.strip()) <= 50:
        return [FieldError(field_name, f"{label} must be between 2 and 50 characters")]
    return []


def validate_registration(
    email: Any,
    password: Any,
    first_name: Any,
    last_name: Any,
    referral_code: Any = None,
) -> list[FieldError]:
    """Check registration fields."""
    errors = []
    errors += validate_email_address(email)
    errors += validate_new_password(password)
    errors += _validate_name(first_name, "first_name", "First name")
    errors += _validate_name(last_name, "last_name", "Last name")
    if referral_code is not None and referral_code != "":
        if not isinstance(referral_code, str) or not REFERRAL_CODE_PATTERN.match(referral_code.strip()):
            errors.append(FieldError("referral_code", "Referral code must be 6 to 10 letters or digits"))
    return errors


def parse_amount(amount: Any) -> Decimal | None:
    """Coerce an amount to Decimal, or None if it is not a finite number."""
    if isinstance(amount, bool):
        return None
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite():
        return None
    return value


def validate_purchase(
    description: Any,
    amount: Any,
    currency: Any,
    credits_used: Any,
) -> list[FieldError]:
    """Check purchase fields."""
    errors = []

    if not isinstance(description, str) or not 1 <= len(description.strip()) <= MAX_DESCRIPTION_LENGTH:
        errors.append(FieldError(
            "description",
            f"Description must be between 1 and {MAX_DESCRIPTION_LENGTH} characters",
        ))

    value = parse_amount(amount)
    if value is None or value < MIN_PURCHASE_AMOUNT:
        errors.append(FieldError("amount", "Amount must be a positive number"))
    elif value > MAX_PURCHASE_AMOUNT:
        errors.append(FieldError("amount", f"Amount must not exceed {MAX_PURCHASE_AMOUNT}"))
    elif value.quantize(CENT) != value:
        errors.append(FieldError("amount", "Amount must have at most 2 decimal places"))

    supported = {c.value for c in Currency}
    if not isinstance(currency, str) or currency.strip().upper() not in supported:
        errors.append(FieldError("currency", f"Currency must be one of {', '.join(sorted(supported))}"))

    if isinstance(credits_used, bool) or not isinstance(credits_used, int) or credits_used < 0:
        errors.append(FieldError("credits_used", "Credits used must be a non-negative integer"))

    return errors
