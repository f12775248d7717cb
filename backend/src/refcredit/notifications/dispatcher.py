"""Notification dispatcher.

Turns a notification kind plus context into an email and hands it to the
transport. ``send`` never raises; ``dispatch`` is fire-and-forget and is only
called after the owning transaction has committed.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from html import escape
from typing import Any

from refcredit.logging_config import get_logger
from refcredit.notifications.email import EmailService, email_service

logger = get_logger(__name__)


class NotificationKind(str, Enum):
    WELCOME = "welcome"
    REFERRAL_WELCOME = "referral_welcome"
    REFERRAL_SUCCESS = "referral_success"
    CREDITS_EARNED = "credits_earned"
    PASSWORD_RESET = "password_reset"
    PASSWORD_RESET_CONFIRMATION = "password_reset_confirmation"


@dataclass(frozen=True)
class Recipient:
    """Snapshot of the user fields an email needs."""
    user_id: int
    email: str
    first_name: str
    last_name: str

    @classmethod
    def from_user(cls, user) -> "Recipient":
        return cls(
            user_id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
        )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


def _render(kind: NotificationKind, recipient: Recipient, context: dict[str, Any]) -> tuple[str, str]:
    """Return (subject, text body)."""
    greeting = f"Hi {recipient.first_name},"

    if kind == NotificationKind.WELCOME:
        return (
            "Welcome to ReferralCredit!",
            f"{greeting}\n\nYour account is ready. Share your referral code "
            f"{context.get('referral_code', '')} to earn credits when friends make a purchase.",
        )
    if kind == NotificationKind.REFERRAL_WELCOME:
        return (
            f"Welcome! You were referred by {context.get('referrer_name', 'a friend')}",
            f"{greeting}\n\n{context.get('referrer_name', 'A friend')} invited you. "
            f"Make your first purchase and you both earn bonus credits.",
        )
    if kind == NotificationKind.REFERRAL_SUCCESS:
        return (
            f"{context.get('referred_name', 'Someone')} used your referral code!",
            f"{greeting}\n\n{context.get('referred_name', 'A new user')} signed up with your code. "
            f"You will earn credits when they complete their first purchase.",
        )
    if kind == NotificationKind.CREDITS_EARNED:
        return (
            f"You earned {context.get('credits_earned', 0)} credits!",
            f"{greeting}\n\n{context.get('purchaser_name', 'Your referral')} made a purchase. "
            f"{context.get('credits_earned', 0)} credits were added to your balance.",
        )
    if kind == NotificationKind.PASSWORD_RESET:
        return (
            "Reset Your Password - ReferralCredit",
            f"{greeting}\n\nUse this link to set a new password:\n{context.get('reset_url', '')}\n\n"
            f"The link is valid for {context.get('expires_in_minutes', 60)} minutes. "
            "If you did not request this, ignore this email.",
        )
    if kind == NotificationKind.PASSWORD_RESET_CONFIRMATION:
        return (
            "Password Successfully Reset - ReferralCredit",
            f"{greeting}\n\nYour password was changed. If this was not you, contact support immediately.",
        )
    raise ValueError(f"Unknown notification kind: {kind}")


class NotificationDispatcher:
    """Best-effort email notifications."""

    def __init__(self, email: EmailService | None = None):
        self.email = email or email_service
        self._pending: set[asyncio.Task] = set()

    async def send(self, kind: NotificationKind, recipient: Recipient, context: dict[str, Any] | None = None) -> bool:
        """Render and deliver one notification.

        Returns:
            True if the transport accepted the message
        """
        try:
            subject, text = _render(kind, recipient, context or {})
            html = "<p>" + escape(text).replace("\n\n", "</p><p>").replace("\n", "<br>") + "</p>"
            sent = await self.email.send_email(
                to_email=recipient.email,
                subject=subject,
                html_content=html,
                text_content=text,
            )
        except Exception as e:
            logger.error("notification_failed", kind=kind.value, user_id=recipient.user_id, error=str(e))
            return False

        if not sent:
            logger.warning("notification_not_delivered", kind=kind.value, user_id=recipient.user_id)
        return bool(sent)

    def dispatch(self, kind: NotificationKind, recipient: Recipient, context: dict[str, Any] | None = None) -> None:
        """Schedule ``send`` without waiting for it. Must run inside an event loop."""
        task = asyncio.get_running_loop().create_task(self.send(kind, recipient, context))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        logger.debug("notification_dispatched", kind=kind.value, user_id=recipient.user_id)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for all scheduled notifications to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


# Singleton instance
notification_dispatcher = NotificationDispatcher()
