# backend/tests/test_referral.py
import pytest
from sqlalchemy.exc import IntegrityError

from refcredit.auth.models import UserAccount
from refcredit.errors import ErrorKind, ReferralCodeExhaustedError
from refcredit.referral.models import Referral, ReferralStatus
from refcredit.storage.db import db

from conftest import PASSWORD

REFERRAL_SERVICE = "refcredit.referral.service"


async def _register(referrals, email="new@example.com", code=None, first_name="Carol"):
    return await referrals.register_with_optional_referral(
        email=email,
        password=PASSWORD,
        first_name=first_name,
        last_name="Jones",
        referral_code=code,
    )


def _referrals() -> list[Referral]:
    with db.session() as session:
        return session.query(Referral).order_by(Referral.id).all()


def test_generated_codes_are_unique_uppercase(referrals, make_user):
    make_user()
    codes = {referrals.generate_unique_referral_code() for _ in range(50)}

    assert len(codes) == 50
    for code in codes:
        assert len(code) == 6
        assert code.isalnum() and code == code.upper()


def test_code_generation_skips_taken_codes(referrals, make_user, mocker):
    taken = make_user().referral_code
    mocker.patch(f"{REFERRAL_SERVICE}._random_code", side_effect=[taken, taken, "FRESH1"])

    assert referrals.generate_unique_referral_code() == "FRESH1"


def test_code_generation_gives_up(referrals, make_user, mocker):
    taken = make_user().referral_code
    mocker.patch(f"{REFERRAL_SERVICE}._random_code", return_value=taken)

    with pytest.raises(ReferralCodeExhaustedError):
        referrals.generate_unique_referral_code()


@pytest.mark.asyncio
async def test_register_without_code(referrals, dispatcher, email):
    result = await _register(referrals, email="  New@Example.com ")
    await dispatcher.drain()

    assert result.ok
    user = result.value.user
    assert user.email == "new@example.com"
    assert user.credits == 0
    assert user.referred_by_id is None
    assert len(user.referral_code) == 6
    assert result.value.referral_id is None
    assert _referrals() == []

    email.send_email.assert_awaited_once()
    assert email.send_email.await_args.kwargs["subject"] == "Welcome to ReferralCredit!"


@pytest.mark.asyncio
async def test_register_with_code_creates_pending_referral(referrals, make_user, dispatcher, email):
    referrer = make_user(first_name="Alice")

    result = await _register(referrals, code=referrer.referral_code.lower())
    await dispatcher.drain()

    assert result.ok
    user = result.value.user
    assert user.referred_by_id == referrer.id
    assert result.value.referrer_id == referrer.id

    [referral] = _referrals()
    assert referral.referrer_id == referrer.id
    assert referral.referred_id == user.id
    assert referral.status == ReferralStatus.PENDING
    assert referral.credits_earned == 0

    recipients = {c.kwargs["to_email"] for c in email.send_email.await_args_list}
    assert recipients == {referrer.email, "new@example.com"}


@pytest.mark.asyncio
async def test_unknown_code_rejects_registration(referrals):
    result = await _register(referrals, code="ZZZZZZ")

    assert result.error == ErrorKind.INVALID_REFERRAL_CODE
    with db.session() as session:
        assert session.query(UserAccount).count() == 0


@pytest.mark.asyncio
async def test_duplicate_email(referrals, make_user):
    existing = make_user(email="taken@example.com")

    result = await _register(referrals, email="TAKEN@example.com")

    assert result.error == ErrorKind.EMAIL_TAKEN
    assert existing.id is not None


@pytest.mark.asyncio
async def test_registration_field_errors(referrals):
    result = await referrals.register_with_optional_referral(
        email="bad", password="weak", first_name="A", last_name="", referral_code="!!",
    )

    assert result.error == ErrorKind.VALIDATION
    assert {e.field for e in result.field_errors} == {
        "email", "password", "first_name", "last_name", "referral_code",
    }


@pytest.mark.asyncio
async def test_code_collision_on_insert_is_retried(referrals, make_user, mocker):
    taken = make_user().referral_code
    # The uniqueness probe misses the collision once, so the insert hits the constraint.
    mocker.patch.object(
        referrals,
        "generate_unique_referral_code",
        side_effect=[taken, "FRESH2"],
    )

    result = await _register(referrals)

    assert result.ok
    assert result.value.user.referral_code == "FRESH2"


def test_referral_edge_is_unique_per_pair(make_user):
    referrer = make_user()
    referred = make_user(referred_by=referrer)

    with pytest.raises(IntegrityError):
        with db.session() as session:
            session.add(Referral(referrer_id=referrer.id, referred_id=referred.id))


def test_validate_code(referrals, make_user):
    owner = make_user(first_name="Alice")

    result = referrals.validate_referral_code(f" {owner.referral_code.lower()} ")

    assert result.ok
    assert result.value.user_id == owner.id
    assert result.value.first_name == "Alice"


def test_validate_unknown_code(referrals):
    assert referrals.validate_referral_code("NOPE99").error == ErrorKind.NOT_FOUND
    assert referrals.validate_referral_code("").error == ErrorKind.NOT_FOUND


def test_validate_own_code_is_self_referral(referrals, make_user):
    owner = make_user()
    other = make_user()

    assert referrals.validate_referral_code(owner.referral_code, current_user_id=owner.id).error == \
        ErrorKind.SELF_REFERRAL
    assert referrals.validate_referral_code(owner.referral_code, current_user_id=other.id).ok


@pytest.mark.asyncio
async def test_referral_stats(referrals, engine, make_user, dispatcher):
    referrer = make_user()
    converted = make_user(referred_by=referrer)
    make_user(referred_by=referrer)

    await engine.settle_purchase(converted.id, "Course", 10, "USD")
    await dispatcher.drain()
    stats = referrals.get_referral_stats(referrer.id)

    assert stats["code"] == referrer.referral_code
    assert stats["link"] == f"http://app.test/register?ref={referrer.referral_code}"
    assert stats["total_referrals"] == 2
    assert stats["completed_referrals"] == 1
    assert stats["pending_referrals"] == 1
    assert stats["credits_earned"] == 2
    assert stats["credits"] == 2
    assert stats["conversion_rate"] == 50.0


def test_stats_for_unknown_user(referrals):
    assert referrals.get_referral_stats(12345) == {}
