# backend/tests/test_reset.py
import asyncio
from datetime import timedelta

import pytest

from refcredit.auth.models import PasswordResetToken, UserAccount
from refcredit.auth.reset import RESET_REQUESTED_MESSAGE
from refcredit.errors import ErrorKind
from refcredit.storage.db import db

from conftest import PASSWORD

NEW_PASSWORD = "N3w-Passw0rd!"


def _tokens_for(user_id: int) -> list[PasswordResetToken]:
    with db.session() as session:
        return session.query(PasswordResetToken).filter(PasswordResetToken.user_id == user_id).all()


@pytest.mark.asyncio
async def test_request_reset_issues_one_token(resets, make_user, email, clock):
    user = make_user()

    result = await resets.request_reset(user.email.upper())

    assert result.ok
    assert result.message == RESET_REQUESTED_MESSAGE

    tokens = _tokens_for(user.id)
    assert len(tokens) == 1
    assert len(tokens[0].token) == 64
    assert tokens[0].used is False
    assert tokens[0].expires_at == clock.now + timedelta(minutes=60)

    kwargs = email.send_email.await_args.kwargs
    assert kwargs["to_email"] == user.email
    assert f"http://app.test/reset-password?token={tokens[0].token}" in kwargs["text_content"]


@pytest.mark.asyncio
async def test_unknown_email_looks_the_same(resets, email):
    result = await resets.request_reset("nobody@example.com")

    assert result.ok
    assert result.message == RESET_REQUESTED_MESSAGE
    email.send_email.assert_not_called()


@pytest.mark.asyncio
async def test_invalid_email_rejected(resets):
    result = await resets.request_reset("not-an-email")

    assert result.error == ErrorKind.VALIDATION
    assert result.field_errors[0].field == "email"


@pytest.mark.asyncio
async def test_email_failure_is_reported(resets, make_user, email):
    email.send_email.return_value = False
    user = make_user()

    result = await resets.request_reset(user.email)

    assert result.error == ErrorKind.NOTIFICATION_FAILED


@pytest.mark.asyncio
async def test_new_request_supersedes_old_token(resets, make_user):
    user = make_user()

    await resets.request_reset(user.email)
    first = _tokens_for(user.id)[0].token
    await resets.request_reset(user.email)
    tokens = _tokens_for(user.id)

    assert len(tokens) == 1
    assert tokens[0].token != first

    stale = await resets.consume_reset(first, NEW_PASSWORD)
    assert stale.error == ErrorKind.INVALID_OR_EXPIRED_TOKEN

    fresh = await resets.consume_reset(tokens[0].token, NEW_PASSWORD)
    assert fresh.ok


@pytest.mark.asyncio
async def test_consume_sets_password_and_clears_tokens(resets, make_user, auth, dispatcher, email):
    user = make_user()
    await resets.request_reset(user.email)
    token = _tokens_for(user.id)[0].token

    result = await resets.consume_reset(token, NEW_PASSWORD)
    await dispatcher.drain()

    assert result.ok
    assert _tokens_for(user.id) == []
    assert auth.authenticate(user.email, NEW_PASSWORD) is not None
    assert auth.authenticate(user.email, PASSWORD) is None
    assert "Password Successfully Reset" in email.send_email.await_args.kwargs["subject"]


@pytest.mark.asyncio
async def test_token_is_single_use(resets, make_user):
    user = make_user()
    await resets.request_reset(user.email)
    token = _tokens_for(user.id)[0].token

    assert (await resets.consume_reset(token, NEW_PASSWORD)).ok
    again = await resets.consume_reset(token, "An0ther-Pass!")

    assert again.error == ErrorKind.INVALID_OR_EXPIRED_TOKEN


@pytest.mark.asyncio
async def test_expired_token_rejected_even_if_not_purged(resets, make_user, auth, clock):
    user = make_user()
    await resets.request_reset(user.email)
    token = _tokens_for(user.id)[0].token

    clock.advance(minutes=60)
    result = await resets.consume_reset(token, NEW_PASSWORD)

    assert result.error == ErrorKind.INVALID_OR_EXPIRED_TOKEN
    assert len(_tokens_for(user.id)) == 1
    assert auth.authenticate(user.email, PASSWORD) is not None


@pytest.mark.asyncio
async def test_token_valid_just_before_expiry(resets, make_user, clock):
    user = make_user()
    await resets.request_reset(user.email)
    token = _tokens_for(user.id)[0].token

    clock.advance(minutes=59, seconds=59)

    assert (await resets.consume_reset(token, NEW_PASSWORD)).ok


@pytest.mark.asyncio
async def test_weak_password_leaves_token_usable(resets, make_user):
    user = make_user()
    await resets.request_reset(user.email)
    token = _tokens_for(user.id)[0].token

    weak = await resets.consume_reset(token, "short")

    assert weak.error == ErrorKind.VALIDATION
    assert weak.field_errors[0].field == "new_password"
    assert (await resets.consume_reset(token, NEW_PASSWORD)).ok


@pytest.mark.asyncio
async def test_unknown_token(resets):
    result = await resets.consume_reset("deadbeef" * 8, NEW_PASSWORD)

    assert result.error == ErrorKind.INVALID_OR_EXPIRED_TOKEN


@pytest.mark.asyncio
async def test_concurrent_consumers_one_wins(resets, make_user, auth):
    user = make_user()
    await resets.request_reset(user.email)
    token = _tokens_for(user.id)[0].token

    first, second = await asyncio.gather(
        resets.consume_reset(token, "Winner-Pass1!"),
        resets.consume_reset(token, "Loser-Pass1!"),
    )

    outcomes = sorted([first.ok, second.ok])
    assert outcomes == [False, True]
    loser = first if not first.ok else second
    assert loser.error == ErrorKind.INVALID_OR_EXPIRED_TOKEN

    winner_password = "Winner-Pass1!" if first.ok else "Loser-Pass1!"
    assert auth.authenticate(user.email, winner_password) is not None


def test_cleanup_removes_expired_and_used(resets, make_user, clock):
    live, expired, used = make_user(), make_user(), make_user()
    with db.session() as session:
        session.add_all([
            PasswordResetToken(user_id=live.id, token="live", expires_at=clock.now + timedelta(minutes=5)),
            PasswordResetToken(user_id=expired.id, token="expired", expires_at=clock.now - timedelta(minutes=5)),
            PasswordResetToken(user_id=used.id, token="used", expires_at=clock.now + timedelta(minutes=5), used=True),
        ])

    removed = resets.cleanup_expired_tokens()

    assert removed == 2
    assert [t.token for t in _tokens_for(live.id)] == ["live"]


@pytest.mark.asyncio
async def test_concurrent_requests_leave_one_token(resets, make_user):
    user = make_user()

    results = await asyncio.gather(*[resets.request_reset(user.email) for _ in range(4)])

    assert all(r.ok for r in results)
    assert len(_tokens_for(user.id)) == 1


@pytest.mark.asyncio
async def test_consume_stamps_update_with_controller_clock(resets, make_user, clock):
    user = make_user()
    await resets.request_reset(user.email)
    token = _tokens_for(user.id)[0].token

    clock.advance(minutes=5)
    assert (await resets.consume_reset(token, NEW_PASSWORD)).ok

    with db.session() as session:
        assert session.get(UserAccount, user.id).updated_at == clock.now
