"""Referral service: code issuance, registration with a referral, code checks."""

import asyncio
import secrets
import string
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from refcredit.auth.local import LocalAuthService, auth_service
from refcredit.auth.models import UserAccount
from refcredit.clock import Clock, utcnow
from refcredit.errors import ErrorKind, ReferralCodeExhaustedError
from refcredit.logging_config import get_logger
from refcredit.notifications.dispatcher import (
    NotificationDispatcher,
    NotificationKind,
    Recipient,
    notification_dispatcher,
)
from refcredit.referral.models import Referral, ReferralStatus
from refcredit.results import Result
from refcredit.settings import settings
from refcredit.storage.db import Database, db
from refcredit.validation import normalize_email, normalize_referral_code, validate_registration

logger = get_logger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits


def _random_code(length: int) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


@dataclass
class Registration:
    """Outcome of a successful registration."""
    user: UserAccount
    referrer_id: int | None
    referral_id: int | None


@dataclass
class ReferrerInfo:
    """Public view of a referral code's owner."""
    user_id: int
    first_name: str
    last_name: str
    referral_code: str


class ReferralService:
    """Service for referral codes and referral relationships."""

    def __init__(
        self,
        database: Database | None = None,
        auth: LocalAuthService | None = None,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock = utcnow,
    ):
        """Initialize referral service."""
        self.db = database or db
        self.auth = auth or auth_service
        self.dispatcher = dispatcher or notification_dispatcher
        self.clock = clock
        self.logger = get_logger(__name__)

    # ==================== CODES ====================

    def generate_unique_referral_code(self, session: Session | None = None) -> str:
        """Generate a referral code not currently used by any account.

        A code returned here can still be taken by a concurrent registration
        before it is inserted; ``register_with_optional_referral`` retries on
        that collision.

        Raises:
            ReferralCodeExhaustedError: If no free code is found
        """
        if session is None:
            with self.db.session() as own_session:
                return self.generate_unique_referral_code(own_session)

        attempts = settings.referral_code_max_attempts
        for _ in range(attempts):
            code = _random_code(settings.referral_code_length)
            taken = session.query(UserAccount.id).filter(
                UserAccount.referral_code == code
            ).first()
            if not taken:
                return code

        raise ReferralCodeExhaustedError(attempts)

    def get_referral_link(self, code: str) -> str:
        return f"{settings.base_url}/register?ref={code}"

    # ==================== REGISTRATION ====================

    async def register_with_optional_referral(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        referral_code: str | None = None,
    ) -> Result[Registration]:
        """Create an account, linking it to a referrer when a code is given.

        The user row and the pending referral edge are written in one
        transaction. Welcome emails go out after commit.
        """
        errors = validate_registration(email, password, first_name, last_name, referral_code)
        if errors:
            return Result.invalid(errors)

        code = normalize_referral_code(referral_code) if referral_code else None
        # Hash outside the transaction; bcrypt is deliberately slow.
        password_hash = self.auth.hash_password(password)

        try:
            outcome = await asyncio.to_thread(
                self._register,
                normalize_email(email),
                password_hash,
                first_name.strip(),
                last_name.strip(),
                code,
            )
        except ReferralCodeExhaustedError as e:
            self.logger.error("referral_code_exhausted", attempts=e.attempts)
            return Result.from_error(e)
        except OperationalError as e:
            self.logger.error("registration_unavailable", error=str(e))
            return Result.failure(ErrorKind.UNAVAILABLE, "Service temporarily unavailable. Please try again later.")
        except SQLAlchemyError:
            self.logger.exception("registration_failed")
            return Result.failure(ErrorKind.INTERNAL, "Internal server error")

        if not outcome.ok:
            return outcome

        registration, referrer = outcome.value
        user = registration.user

        if referrer is not None:
            self.dispatcher.dispatch(
                NotificationKind.REFERRAL_SUCCESS,
                referrer,
                {"referred_name": user.full_name},
            )
            self.dispatcher.dispatch(
                NotificationKind.REFERRAL_WELCOME,
                Recipient.from_user(user),
                {"referrer_name": referrer.full_name},
            )
        else:
            self.dispatcher.dispatch(
                NotificationKind.WELCOME,
                Recipient.from_user(user),
                {"referral_code": user.referral_code},
            )

        return Result.success(registration, message="User registered successfully")

    def _register(
        self,
        email: str,
        password_hash: str,
        first_name: str,
        last_name: str,
        referral_code: str | None,
    ) -> Result[tuple[Registration, Recipient | None]]:
        for attempt in range(1, settings.referral_code_max_attempts + 1):
            try:
                with self.db.session() as session:
                    return self._register_in_session(
                        session, email, password_hash, first_name, last_name, referral_code
                    )
            except IntegrityError as e:
                # Either the email or the freshly generated code was taken by a
                # concurrent registration. Only the code case is retried.
                if self.auth.get_user_by_email(email) is not None:
                    self.logger.info("registration_email_taken", email=email)
                    return Result.failure(ErrorKind.EMAIL_TAKEN, "User already exists with this email")
                self.logger.warning("referral_code_collision", attempt=attempt, error=str(e.orig))

        raise ReferralCodeExhaustedError(settings.referral_code_max_attempts)

    def _register_in_session(
        self,
        session: Session,
        email: str,
        password_hash: str,
        first_name: str,
        last_name: str,
        referral_code: str | None,
    ) -> Result[tuple[Registration, Recipient | None]]:
        existing = session.query(UserAccount.id).filter(UserAccount.email == email).first()
        if existing:
            return Result.failure(ErrorKind.EMAIL_TAKEN, "User already exists with this email")

        referrer = None
        if referral_code:
            referrer = session.query(UserAccount).filter(
                UserAccount.referral_code == referral_code
            ).first()
            if not referrer:
                return Result.failure(ErrorKind.INVALID_REFERRAL_CODE, "Invalid referral code")

        now = self.clock()
        user = UserAccount(
            email=email,
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            referral_code=self.generate_unique_referral_code(session),
            referred_by_id=referrer.id if referrer else None,
            credits=0,
            created_at=now,
            updated_at=now,
        )
        session.add(user)
        session.flush()

        referral = None
        if referrer:
            referral = Referral(
                referrer_id=referrer.id,
                referred_id=user.id,
                status=ReferralStatus.PENDING,
                credits_earned=0,
                created_at=now,
                updated_at=now,
            )
            session.add(referral)
            session.flush()

        self.logger.info(
            "user_registered",
            user_id=user.id,
            referral_code=user.referral_code,
            referred_by=referrer.id if referrer else None,
        )

        registration = Registration(
            user=user,
            referrer_id=referrer.id if referrer else None,
            referral_id=referral.id if referral else None,
        )
        return Result.success((registration, Recipient.from_user(referrer) if referrer else None))

    # ==================== VALIDATION ====================

    def validate_referral_code(self, code: str, current_user_id: int | None = None) -> Result[ReferrerInfo]:
        """Check that a code exists and does not belong to the caller."""
        if not code or not code.strip():
            return Result.failure(ErrorKind.NOT_FOUND, "Invalid referral code")

        with self.db.session() as session:
            referrer = session.query(UserAccount).filter(
                UserAccount.referral_code == normalize_referral_code(code)
            ).first()

            if not referrer:
                return Result.failure(ErrorKind.NOT_FOUND, "Invalid referral code")

            if current_user_id is not None and referrer.id == current_user_id:
                self.logger.info("self_referral_rejected", user_id=current_user_id)
                return Result.failure(ErrorKind.SELF_REFERRAL, "You cannot use your own referral code")

            return Result.success(
                ReferrerInfo(
                    user_id=referrer.id,
                    first_name=referrer.first_name,
                    last_name=referrer.last_name,
                    referral_code=referrer.referral_code,
                ),
                message="Valid referral code",
            )

    # ==================== STATS ====================

    def get_referral_stats(self, user_id: int) -> dict[str, Any]:
        """Get referral statistics for a user.

        Args:
            user_id: User ID

        Returns:
            Dict with referral stats
        """
        with self.db.session() as session:
            user = session.query(UserAccount).filter(UserAccount.id == user_id).first()
            if not user:
                return {}

            counts = dict(
                session.query(Referral.status, func.count(Referral.id))
                .filter(Referral.referrer_id == user_id)
                .group_by(Referral.status)
                .all()
            )
            total = sum(counts.values())
            completed = counts.get(ReferralStatus.COMPLETED, 0)

            credits_from_referrals = session.query(
                func.coalesce(func.sum(Referral.credits_earned), 0)
            ).filter(
                Referral.referrer_id == user_id,
                Referral.status == ReferralStatus.COMPLETED,
            ).scalar()

            return {
                "code": user.referral_code,
                "link": self.get_referral_link(user.referral_code),
                "total_referrals": total,
                "completed_referrals": completed,
                "pending_referrals": counts.get(ReferralStatus.PENDING, 0),
                "credits_earned": int(credits_from_referrals or 0),
                "credits": user.credits,
                "conversion_rate": round(completed / total * 100, 2) if total else 0.0,
            }


# Singleton instance
referral_service = ReferralService()
