# backend/tests/conftest.py
import os
import tempfile
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

# Settings are read at import time, so the environment goes first.
_DB_DIR = tempfile.mkdtemp(prefix="refcredit-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["ENV"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["DB_BUSY_TIMEOUT_SECONDS"] = "60"
os.environ["FRONTEND_URL"] = "http://app.test"
os.environ.pop("SENDGRID_API_KEY", None)

import pytest

from refcredit.auth.local import LocalAuthService
from refcredit.auth.models import UserAccount
from refcredit.auth.reset import ResetFlowController
from refcredit.notifications.dispatcher import NotificationDispatcher
from refcredit.notifications.email import EmailService
from refcredit.purchases.policy import RewardPolicy
from refcredit.purchases.settlement import SettlementEngine
from refcredit.referral.models import Referral, ReferralStatus
from refcredit.referral.service import ReferralService
from refcredit.storage.db import db

PASSWORD = "Secret123!"


class FakeClock:
    """Clock the tests can move forward."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 15, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def database():
    """Fresh tables for every test."""
    db.drop_tables()
    db.create_tables()
    yield db


@pytest.fixture
def email(mocker):
    service = EmailService(api_key=None)
    mocker.patch.object(service, "send_email", new_callable=AsyncMock, return_value=True)
    return service


@pytest.fixture
def dispatcher(email):
    return NotificationDispatcher(email=email)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def auth(database):
    return LocalAuthService(database=database)


@pytest.fixture
def referrals(database, auth, dispatcher):
    return ReferralService(database=database, auth=auth, dispatcher=dispatcher)


@pytest.fixture
def engine(database, dispatcher):
    return SettlementEngine(database=database, dispatcher=dispatcher, policy=RewardPolicy())


@pytest.fixture
def resets(database, auth, dispatcher, clock):
    return ResetFlowController(database=database, auth=auth, dispatcher=dispatcher, clock=clock)


@pytest.fixture
def password_hash(auth):
    return auth.hash_password(PASSWORD)


@pytest.fixture
def make_user(database, password_hash):
    """Insert an account directly, optionally with a pending referral edge."""
    counter = {"n": 0}

    def _make(email=None, credits=0, referred_by: UserAccount | None = None, first_name="Test"):
        counter["n"] += 1
        n = counter["n"]
        with database.session() as session:
            user = UserAccount(
                email=email or f"user{n}@example.com",
                password_hash=password_hash,
                first_name=first_name,
                last_name=f"User{n}",
                referral_code=f"CODE{n:02d}",
                referred_by_id=referred_by.id if referred_by else None,
                credits=credits,
            )
            session.add(user)
            session.flush()
            if referred_by:
                session.add(Referral(
                    referrer_id=referred_by.id,
                    referred_id=user.id,
                    status=ReferralStatus.PENDING,
                ))
        return user

    return _make


def get_user(user_id: int) -> UserAccount:
    with db.session() as session:
        return session.get(UserAccount, user_id)
