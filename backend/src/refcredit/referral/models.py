"""Referral ledger models."""

from enum import Enum

from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import relationship

from refcredit.clock import utcnow
from refcredit.storage.db import Base


class ReferralStatus(str, Enum):
    """Referral lifecycle. Transitions only move forward."""
    PENDING = "pending"
    COMPLETED = "completed"
    CONVERTED = "converted"
    EXPIRED = "expired"


class Referral(Base):
    """Directed referrer -> referred edge, at most one per ordered pair.

    Created ``pending`` at registration; becomes ``completed`` exactly once,
    when the referred user's qualifying purchase settles.
    """
    __tablename__ = "referrals"
    __table_args__ = (
        UniqueConstraint("referrer_id", "referred_id", name="uq_referrals_referrer_referred"),
    )

    id = Column(Integer, primary_key=True)
    referrer_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, index=True)
    referred_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, index=True)

    status = Column(SQLEnum(ReferralStatus), nullable=False, default=ReferralStatus.PENDING, index=True)
    credits_earned = Column(Integer, nullable=False, default=0)

    # Timestamps
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    referrer = relationship("UserAccount", foreign_keys=[referrer_id])
    referred = relationship("UserAccount", foreign_keys=[referred_id])

    def __repr__(self):
        return f"<Referral(referrer={self.referrer_id}, referred={self.referred_id}, status={self.status})>"
