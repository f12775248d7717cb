"""Local authentication service (email/password)."""

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from refcredit.auth.models import UserAccount
from refcredit.clock import utcnow
from refcredit.logging_config import get_logger
from refcredit.settings import settings
from refcredit.storage.db import Database, db
from refcredit.validation import normalize_email

logger = get_logger(__name__)

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.bcrypt_rounds)

# JWT settings
JWT_ALGORITHM = "HS256"


class LocalAuthService:
    """Credential hashing, login and access tokens for local users."""

    def __init__(self, database: Database | None = None):
        """Initialize auth service."""
        self.db = database or db
        self.logger = get_logger(__name__)

    # ==================== PASSWORD ====================

    def _truncate_password(self, password: str) -> str:
        """Truncate password to 72 bytes (bcrypt limit).

        Args:
            password: Plain password

        Returns:
            Truncated password
        """
        return password.encode('utf-8')[:72].decode('utf-8', errors='ignore')

    def hash_password(self, password: str) -> str:
        """Hash a password.

        Args:
            password: Plain password

        Returns:
            Hashed password
        """
        return pwd_context.hash(self._truncate_password(password))

    def verify_password(self, password: str, hashed: str) -> bool:
        """Verify a password against hash.

        Args:
            password: Plain password
            hashed: Hashed password

        Returns:
            True if matches
        """
        return pwd_context.verify(self._truncate_password(password), hashed)

    def set_password_hash(
        self,
        session: Session,
        user: UserAccount,
        password_hash: str,
        now: datetime | None = None,
    ) -> None:
        """Replace a user's credential hash inside the caller's transaction.

        The hash is computed by the caller before the transaction starts.
        """
        user.password_hash = password_hash
        user.updated_at = now or utcnow()
        session.flush()

    # ==================== USERS ====================

    def authenticate(self, email: str, password: str) -> UserAccount | None:
        """Authenticate a user.

        Args:
            email: User email
            password: Plain password

        Returns:
            User account if valid, None otherwise
        """
        with self.db.session() as session:
            user = session.query(UserAccount).filter(
                UserAccount.email == normalize_email(email),
                UserAccount.is_active == True,  # noqa: E712
            ).first()

            if not user:
                return None

            if not self.verify_password(password, user.password_hash):
                return None

            user.last_login_at = utcnow()
            session.commit()

            self.logger.info("user_authenticated", user_id=user.id)
            return user

    def get_user_by_id(self, user_id: int) -> UserAccount | None:
        with self.db.session() as session:
            return session.query(UserAccount).filter(
                UserAccount.id == user_id,
                UserAccount.is_active == True,  # noqa: E712
            ).first()

    def get_user_by_email(self, email: str) -> UserAccount | None:
        with self.db.session() as session:
            return session.query(UserAccount).filter(
                UserAccount.email == normalize_email(email),
            ).first()

    # ==================== JWT TOKENS ====================

    def create_access_token(
        self,
        user: UserAccount,
        expires_delta: timedelta | None = None,
    ) -> str:
        """Create JWT access token.

        Args:
            user: User account
            expires_delta: Optional expiration time

        Returns:
            JWT token string
        """
        if expires_delta is None:
            expires_delta = timedelta(hours=settings.jwt_expire_hours)

        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "exp": now + expires_delta,
            "iat": now,
        }

        return jwt.encode(payload, settings.jwt_secret_key, algorithm=JWT_ALGORITHM)

    def verify_token(self, token: str) -> dict[str, Any] | None:
        """Verify and decode JWT token.

        Returns:
            Token payload or None if invalid
        """
        try:
            return jwt.decode(token, settings.jwt_secret_key, algorithms=[JWT_ALGORITHM])
        except JWTError as e:
            self.logger.debug("token_verification_failed", error=str(e))
            return None

    def get_user_from_token(self, token: str) -> UserAccount | None:
        payload = self.verify_token(token)
        if not payload:
            return None

        user_id = payload.get("sub")
        if not user_id:
            return None

        return self.get_user_by_id(int(user_id))


# Singleton instance
auth_service = LocalAuthService()
