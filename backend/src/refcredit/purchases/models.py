"""Purchase ledger and credit transaction models."""

from enum import Enum

from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import relationship

from refcredit.clock import utcnow
from refcredit.storage.db import Base


class Currency(str, Enum):
    """Supported purchase currencies."""
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"


class PurchaseStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Purchase(Base):
    """One purchase by one user.

    Immutable once completed, except for the one-time attachment of the
    referral credit snapshot (``referral_credit_referrer_id`` and
    ``referral_credit_amount``).
    """
    __tablename__ = "purchases"
    __table_args__ = (
        Index("ix_purchases_created_at", "created_at"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, index=True)

    # Details
    description = Column(String(100), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(SQLEnum(Currency), nullable=False, default=Currency.USD)
    credits_used = Column(Integer, nullable=False, default=0)
    status = Column(SQLEnum(PurchaseStatus), nullable=False, default=PurchaseStatus.PENDING)

    # Referral credit snapshot
    referral_credit_referrer_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=True)
    referral_credit_amount = Column(Integer, nullable=True)

    # Timestamps
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("UserAccount", foreign_keys=[user_id])

    def __repr__(self):
        return f"<Purchase(id={self.id}, user={self.user_id}, amount={self.amount} {self.currency})>"

    @property
    def referral_credit(self) -> dict | None:
        if self.referral_credit_referrer_id is None:
            return None
        return {
            "referrer_id": self.referral_credit_referrer_id,
            "amount": self.referral_credit_amount,
        }


class CreditTransaction(Base):
    """Append-only audit row for every balance change."""
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, index=True)

    # Transaction details
    amount = Column(Integer, nullable=False)  # Positive = credit, Negative = debit
    balance_after = Column(Integer, nullable=False)
    operation = Column(String(50), nullable=False)  # purchase_spend, referral_bonus

    # Reference
    purchase_id = Column(Integer, ForeignKey("purchases.id"), nullable=True, index=True)
    referral_id = Column(Integer, ForeignKey("referrals.id"), nullable=True)
    description = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<CreditTransaction(id={self.id}, user={self.user_id}, amount={self.amount})>"
