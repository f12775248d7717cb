"""Password-reset token lifecycle.

A user's reset capability moves NONE -> ISSUED -> CONSUMED | EXPIRED |
SUPERSEDED. The per-user token set is only ever replaced wholesale: issuing
deletes every prior token before inserting the new one, and a successful
consume deletes every token the user has, including the one just used.
"""

import asyncio
import secrets
from datetime import timedelta

from sqlalchemy import delete, or_, update
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from refcredit.auth.local import LocalAuthService, auth_service
from refcredit.auth.models import PasswordResetToken, UserAccount
from refcredit.clock import Clock, utcnow
from refcredit.errors import ErrorKind, InvalidResetTokenError
from refcredit.logging_config import get_logger, token_hint
from refcredit.notifications.dispatcher import (
    NotificationDispatcher,
    NotificationKind,
    Recipient,
    notification_dispatcher,
)
from refcredit.results import Result
from refcredit.settings import settings
from refcredit.storage.db import Database, db
from refcredit.validation import normalize_email, validate_email_address, validate_new_password

logger = get_logger(__name__)

RESET_REQUESTED_MESSAGE = "If an account with that email exists, we've sent password reset instructions."
RESET_FAILED_MESSAGE = "Failed to send password reset email. Please try again."
RESET_DONE_MESSAGE = "Password has been reset successfully"

TOKEN_BYTES = 32


class ResetFlowController:
    """Issues and consumes single-use password-reset tokens."""

    def __init__(
        self,
        database: Database | None = None,
        auth: LocalAuthService | None = None,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock = utcnow,
        ttl: timedelta | None = None,
    ):
        self.db = database or db
        self.auth = auth or auth_service
        self.dispatcher = dispatcher or notification_dispatcher
        self.clock = clock
        self.ttl = ttl or timedelta(minutes=settings.reset_token_ttl_minutes)

    # ==================== ISSUE ====================

    async def request_reset(self, email: str) -> Result[None]:
        """Issue a fresh reset token and email it.

        Unknown emails get the same success response as known ones.
        """
        errors = validate_email_address(email)
        if errors:
            return Result.invalid(errors)

        try:
            issued = await asyncio.to_thread(self._issue_token, normalize_email(email))
        except OperationalError as e:
            logger.error("reset_issue_unavailable", error=str(e))
            return Result.failure(ErrorKind.UNAVAILABLE, "Service temporarily unavailable. Please try again later.")
        except SQLAlchemyError:
            logger.exception("reset_issue_failed")
            return Result.failure(ErrorKind.INTERNAL, "Internal server error")

        if issued is None:
            logger.info("reset_requested_unknown_email")
            return Result.success(message=RESET_REQUESTED_MESSAGE)

        recipient, token = issued
        reset_url = f"{settings.base_url}/reset-password?token={token}"

        sent = await self.dispatcher.send(
            NotificationKind.PASSWORD_RESET,
            recipient,
            {
                "reset_url": reset_url,
                "expires_in_minutes": int(self.ttl.total_seconds() // 60),
            },
        )
        if not sent:
            logger.error("reset_email_failed", user_id=recipient.user_id)
            return Result.failure(ErrorKind.NOTIFICATION_FAILED, RESET_FAILED_MESSAGE)

        logger.info("reset_email_sent", user_id=recipient.user_id)
        return Result.success(message=RESET_REQUESTED_MESSAGE)

    def _issue_token(self, email: str) -> tuple[Recipient, str] | None:
        with self.db.session() as session:
            # Row lock serializes concurrent issuers for the same user.
            user = session.query(UserAccount).filter(
                UserAccount.email == email
            ).with_for_update().first()
            if not user:
                return None

            superseded = session.execute(
                delete(PasswordResetToken)
                .where(PasswordResetToken.user_id == user.id)
                .execution_options(synchronize_session=False)
            ).rowcount

            now = self.clock()
            token = secrets.token_hex(TOKEN_BYTES)
            session.add(PasswordResetToken(
                user_id=user.id,
                token=token,
                expires_at=now + self.ttl,
                used=False,
                created_at=now,
            ))
            session.flush()

            logger.info(
                "reset_token_issued",
                user_id=user.id,
                superseded=superseded,
                token=token_hint(token),
            )
            return Recipient.from_user(user), token

    # ==================== CONSUME ====================

    async def consume_reset(self, token: str, new_password: str) -> Result[None]:
        """Spend a reset token to set a new password.

        Every token problem (unknown, used, superseded, expired) yields the
        same ``invalid_or_expired_token`` failure and changes nothing.
        """
        errors = validate_new_password(new_password, field_name="new_password")
        if errors:
            return Result.invalid(errors)

        if not isinstance(token, str) or not token:
            return Result.from_error(InvalidResetTokenError())

        try:
            recipient = await asyncio.to_thread(self._consume_token, token, new_password)
        except InvalidResetTokenError as e:
            logger.info("reset_token_rejected", token=token_hint(token))
            return Result.from_error(e)
        except OperationalError as e:
            logger.error("reset_consume_unavailable", error=str(e))
            return Result.failure(ErrorKind.UNAVAILABLE, "Service temporarily unavailable. Please try again later.")
        except SQLAlchemyError:
            logger.exception("reset_consume_failed")
            return Result.failure(ErrorKind.INTERNAL, "Internal server error")

        self.dispatcher.dispatch(NotificationKind.PASSWORD_RESET_CONFIRMATION, recipient)
        return Result.success(message=RESET_DONE_MESSAGE)

    def _valid_token_query(self, session, now):
        return session.query(PasswordResetToken).filter(
            PasswordResetToken.used == False,  # noqa: E712
            PasswordResetToken.expires_at > now,
        )

    def _consume_token(self, token: str, new_password: str) -> Recipient:
        # Hash before taking the write lock.
        password_hash = self.auth.hash_password(new_password)

        with self.db.session() as session:
            record = self._valid_token_query(session, self.clock()).filter(
                PasswordResetToken.token == token,
            ).with_for_update().first()
            if not record:
                raise InvalidResetTokenError()

            user = session.query(UserAccount).filter(UserAccount.id == record.user_id).first()
            if not user:
                raise InvalidResetTokenError()

            # Double-check right before mutating; a concurrent consumer may have won.
            still_valid = self._valid_token_query(session, self.clock()).filter(
                PasswordResetToken.id == record.id,
            ).first()
            if not still_valid:
                raise InvalidResetTokenError()

            self.auth.set_password_hash(session, user, password_hash, now=self.clock())

            marked = session.execute(
                update(PasswordResetToken)
                .where(
                    PasswordResetToken.id == record.id,
                    PasswordResetToken.used == False,  # noqa: E712
                )
                .values(used=True)
                .execution_options(synchronize_session=False)
            ).rowcount
            if marked != 1:
                raise InvalidResetTokenError()

            deleted = session.execute(
                delete(PasswordResetToken)
                .where(PasswordResetToken.user_id == user.id)
                .execution_options(synchronize_session=False)
            ).rowcount

            logger.info("password_reset", user_id=user.id, tokens_deleted=deleted)
            return Recipient.from_user(user)

    # ==================== CLEANUP ====================

    def cleanup_expired_tokens(self) -> int:
        """Delete tokens that are used or past expiry.

        Returns:
            Number of tokens removed
        """
        with self.db.session() as session:
            removed = session.execute(
                delete(PasswordResetToken).where(
                    or_(
                        PasswordResetToken.expires_at <= self.clock(),
                        PasswordResetToken.used == True,  # noqa: E712
                    )
                )
                .execution_options(synchronize_session=False)
            ).rowcount

        logger.info("reset_tokens_cleaned", removed=removed)
        return removed


# Singleton instance
reset_controller = ResetFlowController()
