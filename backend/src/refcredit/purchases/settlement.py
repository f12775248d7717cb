"""Purchase settlement with referral payout.

One call to ``settle_purchase`` is one transaction: the credits-used debit,
the purchase row, the referral status flip and both bonus credits commit
together or not at all. The referral is claimed with a compare-and-set on
``status == pending``, so concurrent settlements for the same user can pay
the bonus at most once. Notifications go out only after commit.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from refcredit.auth.models import UserAccount
from refcredit.clock import Clock, utcnow
from refcredit.errors import DomainError, ErrorKind, InsufficientCreditsError, UserNotFoundError
from refcredit.logging_config import get_logger
from refcredit.notifications.dispatcher import (
    NotificationDispatcher,
    NotificationKind,
    Recipient,
    notification_dispatcher,
)
from refcredit.purchases.models import CreditTransaction, Currency, Purchase, PurchaseStatus
from refcredit.purchases.policy import RewardPolicy
from refcredit.referral.models import Referral, ReferralStatus
from refcredit.results import Result
from refcredit.settings import settings
from refcredit.storage.db import Database, db
from refcredit.validation import CENT, parse_amount, validate_purchase

logger = get_logger(__name__)


@dataclass
class ReferralPayout:
    referral_id: int
    referrer_id: int
    referrer_bonus: int
    referred_bonus: int


@dataclass
class SettlementReceipt:
    """What a committed settlement produced."""
    purchase: Purchase
    credits_balance: int
    purchaser_name: str
    payout: ReferralPayout | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.purchase.id,
            "description": self.purchase.description,
            "amount": str(self.purchase.amount),
            "currency": self.purchase.currency.value,
            "credits_used": self.purchase.credits_used,
            "status": self.purchase.status.value,
            "completed_at": self.purchase.completed_at.isoformat() if self.purchase.completed_at else None,
            "referral_credit": self.purchase.referral_credit,
            "credits_balance": self.credits_balance,
        }


class SettlementEngine:
    """Settles purchases and pays out referral bonuses exactly once."""

    def __init__(
        self,
        database: Database | None = None,
        dispatcher: NotificationDispatcher | None = None,
        policy: RewardPolicy | None = None,
        clock: Clock = utcnow,
        max_attempts: int | None = None,
    ):
        self.db = database or db
        self.dispatcher = dispatcher or notification_dispatcher
        self.policy = policy or RewardPolicy.from_settings()
        self.clock = clock
        self.max_attempts = max_attempts or settings.settlement_max_attempts

    async def settle_purchase(
        self,
        user_id: int,
        description: str,
        amount: Decimal | float | str,
        currency: str,
        credits_used: int = 0,
    ) -> Result[SettlementReceipt]:
        """Record a purchase and apply its credit effects atomically.

        Args:
            user_id: Purchasing user
            description: What was bought
            amount: Purchase amount, > 0
            currency: One of the supported currency codes
            credits_used: Credits to redeem against the purchase, >= 0

        Returns:
            Result carrying a SettlementReceipt, or a failure such as
            ``insufficient_credits`` (nothing written in that case)
        """
        errors = validate_purchase(description, amount, currency, credits_used)
        if errors:
            return Result.invalid(errors)

        amount = parse_amount(amount).quantize(CENT)
        currency = Currency(currency.strip().upper())

        try:
            receipt, referrer = await asyncio.to_thread(
                self._settle_with_retry, user_id, description.strip(), amount, currency, credits_used
            )
        except DomainError as e:
            logger.info("settlement_rejected", user_id=user_id, reason=e.kind.value, detail=e.message)
            return Result.from_error(e)
        except OperationalError as e:
            logger.error("settlement_unavailable", user_id=user_id, error=str(e))
            return Result.failure(ErrorKind.UNAVAILABLE, "Service temporarily unavailable. Please try again later.")
        except SQLAlchemyError:
            logger.exception("settlement_failed", user_id=user_id)
            return Result.failure(ErrorKind.INTERNAL, "Internal server error")

        if receipt.payout and referrer is not None and receipt.payout.referrer_bonus > 0:
            self.dispatcher.dispatch(
                NotificationKind.CREDITS_EARNED,
                referrer,
                {
                    "credits_earned": receipt.payout.referrer_bonus,
                    "purchaser_name": receipt.purchaser_name,
                },
            )

        return Result.success(receipt, message="Purchase created successfully")

    # ==================== TRANSACTION ====================

    def _log_retry(self, retry_state: RetryCallState) -> None:
        logger.warning(
            "settlement_retry",
            attempt=retry_state.attempt_number,
            error=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        )

    def _settle_with_retry(
        self,
        user_id: int,
        description: str,
        amount: Decimal,
        currency: Currency,
        credits_used: int,
    ) -> tuple[SettlementReceipt, Recipient | None]:
        # Only transient storage errors are retried; nothing has committed when they occur.
        for attempt in Retrying(
            retry=retry_if_exception_type(OperationalError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=0.05, max=1.0),
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                return self._settle_once(user_id, description, amount, currency, credits_used)

    def _settle_once(
        self,
        user_id: int,
        description: str,
        amount: Decimal,
        currency: Currency,
        credits_used: int,
    ) -> tuple[SettlementReceipt, Recipient | None]:
        with self.db.session() as session:
            now = self.clock()

            user = session.query(UserAccount).filter(
                UserAccount.id == user_id
            ).with_for_update().first()
            if not user:
                raise UserNotFoundError(user_id)

            if credits_used > 0:
                self._debit(session, user, credits_used, now)

            purchase = Purchase(
                user_id=user_id,
                description=description,
                amount=amount,
                currency=currency,
                credits_used=credits_used,
                status=PurchaseStatus.COMPLETED,
                completed_at=now,
                created_at=now,
                updated_at=now,
            )
            session.add(purchase)
            session.flush()

            if credits_used > 0:
                self._record(session, user_id, -credits_used, "purchase_spend", purchase.id, None,
                             f"Credits redeemed for purchase #{purchase.id}")

            payout = None
            referrer = None
            referral = session.query(Referral).filter(
                Referral.referred_id == user_id,
                Referral.status == ReferralStatus.PENDING,
            ).order_by(Referral.created_at, Referral.id).with_for_update().first()

            if referral:
                payout = self._pay_referral(session, referral, purchase, now)
                if payout:
                    referrer_account = session.query(UserAccount).filter(
                        UserAccount.id == payout.referrer_id
                    ).first()
                    referrer = Recipient.from_user(referrer_account)

            session.refresh(user)

            logger.info(
                "purchase_settled",
                user_id=user_id,
                purchase_id=purchase.id,
                amount=str(amount),
                currency=currency.value,
                credits_used=credits_used,
                referral_id=payout.referral_id if payout else None,
                credits_balance=user.credits,
            )

            receipt = SettlementReceipt(
                purchase=purchase,
                credits_balance=user.credits,
                purchaser_name=user.full_name,
                payout=payout,
            )
            return receipt, referrer

    def _debit(self, session: Session, user: UserAccount, credits_used: int, now) -> None:
        if user.credits < credits_used:
            raise InsufficientCreditsError(credits_used, user.credits)

        debited = session.execute(
            update(UserAccount)
            .where(UserAccount.id == user.id, UserAccount.credits >= credits_used)
            .values(credits=UserAccount.credits - credits_used, updated_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        if debited != 1:
            session.refresh(user)
            raise InsufficientCreditsError(credits_used, user.credits)

    def _credit(self, session: Session, user_id: int, amount: int, now) -> None:
        session.execute(
            update(UserAccount)
            .where(UserAccount.id == user_id)
            .values(credits=UserAccount.credits + amount, updated_at=now)
            .execution_options(synchronize_session=False)
        )

    def _pay_referral(self, session: Session, referral: Referral, purchase: Purchase, now) -> ReferralPayout | None:
        bonus = self.policy.bonus_for(purchase.amount)
        referrer_bonus = bonus if self.policy.reward_referrer else 0
        referred_bonus = bonus if self.policy.reward_referred else 0

        claimed = session.execute(
            update(Referral)
            .where(Referral.id == referral.id, Referral.status == ReferralStatus.PENDING)
            .values(
                status=ReferralStatus.COMPLETED,
                completed_at=now,
                credits_earned=bonus,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        if claimed != 1:
            logger.info("referral_already_completed", referral_id=referral.id)
            return None

        for party_id, credit in ((referral.referrer_id, referrer_bonus), (referral.referred_id, referred_bonus)):
            if credit > 0:
                self._credit(session, party_id, credit, now)
                self._record(session, party_id, credit, "referral_bonus", purchase.id, referral.id,
                             f"Referral bonus for purchase #{purchase.id}")

        purchase.referral_credit_referrer_id = referral.referrer_id
        purchase.referral_credit_amount = referrer_bonus
        session.flush()

        logger.info(
            "referral_completed",
            referral_id=referral.id,
            referrer_id=referral.referrer_id,
            referred_id=referral.referred_id,
            referrer_bonus=referrer_bonus,
            referred_bonus=referred_bonus,
        )
        return ReferralPayout(
            referral_id=referral.id,
            referrer_id=referral.referrer_id,
            referrer_bonus=referrer_bonus,
            referred_bonus=referred_bonus,
        )

    def _record(
        self,
        session: Session,
        user_id: int,
        amount: int,
        operation: str,
        purchase_id: int | None,
        referral_id: int | None,
        description: str,
    ) -> None:
        balance_after = session.query(UserAccount.credits).filter(UserAccount.id == user_id).scalar()
        session.add(CreditTransaction(
            user_id=user_id,
            amount=amount,
            balance_after=balance_after,
            operation=operation,
            purchase_id=purchase_id,
            referral_id=referral_id,
            description=description,
        ))


# Singleton instance
settlement_engine = SettlementEngine()
