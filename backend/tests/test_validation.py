# backend/tests/test_validation.py
from decimal import Decimal

import pytest

from refcredit.purchases.policy import RewardPolicy
from refcredit.validation import (
    parse_amount,
    validate_password_complexity,
    validate_purchase,
    validate_registration,
)


@pytest.mark.parametrize("password, message", [
    ("Ab1!", "at least 8 characters"),
    ("abcdefg1!", "uppercase"),
    ("ABCDEFG1!", "lowercase"),
    ("Abcdefgh!", "digit"),
    ("Abcdefgh1", "special character"),
])
def test_password_rules(password, message):
    with pytest.raises(ValueError, match=message):
        validate_password_complexity(password)


def test_registration_accepts_valid_input():
    assert validate_registration("a@example.com", "Secret123!", "Ann", "Lee", None) == []
    assert validate_registration("a@example.com", "Secret123!", "Ann", "Lee", "") == []
    assert validate_registration("a@example.com", "Secret123!", "Ann", "Lee", "abc123") == []


def test_registration_rejects_long_code():
    errors = validate_registration("a@example.com", "Secret123!", "Ann", "Lee", "ABCDEFGHIJK")
    assert [e.field for e in errors] == ["referral_code"]


@pytest.mark.parametrize("value, expected", [
    ("10.50", Decimal("10.50")),
    (3, Decimal("3")),
    (True, None),
    ("abc", None),
    ("NaN", None),
    (None, None),
])
def test_parse_amount(value, expected):
    assert parse_amount(value) == expected


def test_purchase_amount_boundaries():
    assert validate_purchase("Thing", "0.01", "USD", 0) == []
    assert [e.field for e in validate_purchase("Thing", "0.00", "USD", 0)] == ["amount"]
    assert [e.field for e in validate_purchase("Thing", "-5", "USD", 0)] == ["amount"]


def test_purchase_credits_used_must_be_int():
    assert [e.field for e in validate_purchase("Thing", 5, "USD", True)] == ["credits_used"]
    assert [e.field for e in validate_purchase("Thing", 5, "USD", 1.5)] == ["credits_used"]


def test_purchase_description_length():
    assert [e.field for e in validate_purchase("x" * 101, 5, "USD", 0)] == ["description"]
    assert [e.field for e in validate_purchase("   ", 5, "USD", 0)] == ["description"]


def test_reward_policy_modes():
    assert RewardPolicy().bonus_for(Decimal("999")) == 2
    assert RewardPolicy(mode="percentage", percent=5).bonus_for(Decimal("19.99")) == 0
    assert RewardPolicy(mode="percentage", percent=5).bonus_for(Decimal("40")) == 2

    with pytest.raises(ValueError):
        RewardPolicy(mode="tiered")
    with pytest.raises(ValueError):
        RewardPolicy(fixed_credits=-1)


def test_purchase_amount_precision_and_ceiling():
    assert validate_purchase("Thing", "10.50", "USD", 0) == []
    assert validate_purchase("Thing", "9999999999.99", "USD", 0) == []

    [sub_cent] = validate_purchase("Thing", "10.005", "USD", 0)
    assert sub_cent.field == "amount"
    assert "2 decimal places" in sub_cent.message

    [too_big] = validate_purchase("Thing", "10000000000.00", "USD", 0)
    assert too_big.field == "amount"
    assert "must not exceed" in too_big.message

    assert [e.field for e in validate_purchase("Thing", "1e20", "USD", 0)] == ["amount"]
