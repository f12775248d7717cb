"""Identity models: user accounts and password-reset tokens."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from refcredit.clock import utcnow
from refcredit.storage.db import Base


class UserAccount(Base):
    """User account: credentials plus the credit wallet.

    ``credits`` is written only by the settlement engine.
    """
    __tablename__ = "user_accounts"
    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_user_accounts_credits_non_negative"),
    )

    id = Column(Integer, primary_key=True)

    # Identity (email stored lower-cased)
    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)

    # Auth
    password_hash = Column(String(255), nullable=False)
    email_verified = Column(Boolean, default=False)

    # Referral
    referral_code = Column(String(10), unique=True, nullable=False, index=True)
    referred_by_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=True, index=True)

    # Credits
    credits = Column(Integer, nullable=False, default=0)

    # Status
    is_active = Column(Boolean, default=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    last_login_at = Column(DateTime, nullable=True)

    # Relationships
    referred_by = relationship("UserAccount", remote_side=[id])
    reset_tokens = relationship("PasswordResetToken", back_populates="user")

    def __repr__(self):
        return f"<UserAccount(id={self.id}, email={self.email}, code={self.referral_code})>"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class PasswordResetToken(Base):
    """Single-use capability to set a new password.

    Valid iff not used and not yet expired. At most one row exists per user:
    issuing a new token deletes the old ones, consuming a token deletes all.
    """
    __tablename__ = "password_reset_tokens"
    __table_args__ = (
        Index("ix_password_reset_tokens_user_used", "user_id", "used"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("user_accounts.id"), nullable=False, index=True)
    token = Column(String(128), unique=True, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    used = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)

    user = relationship("UserAccount", back_populates="reset_tokens")

    def __repr__(self):
        return f"<PasswordResetToken(id={self.id}, user={self.user_id}, used={self.used})>"

    def is_valid(self, now: datetime) -> bool:
        return not self.used and now < self.expires_at


# Pydantic models for API


class UserProfile(BaseModel):
    """User data for API responses."""
    id: int
    email: str
    first_name: str
    last_name: str
    referral_code: str
    credits: int
    email_verified: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
