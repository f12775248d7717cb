"""Application settings and configuration."""

import sys
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_JWT_DEFAULTS = {"change-me-in-production", "secret", "your_jwt_secret_key_here_at_least_32_characters"}


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "refcredit"
    env: str = "development"
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    allowed_origins: str = "http://localhost:3000"
    frontend_url: str | None = None

    # JWT
    jwt_secret_key: str = "change-me-in-production"
    jwt_expire_hours: int = 2

    # Database
    database_url: str = "sqlite:///./refcredit.db"
    db_busy_timeout_seconds: float = 30.0

    # Password hashing
    bcrypt_rounds: int = 12

    # Email (SendGrid)
    sendgrid_api_key: str | None = None
    sendgrid_from_email: str = "noreply@refcredit.local"
    sendgrid_from_name: str = "ReferralCredit"

    # Referral codes
    referral_code_length: int = 6
    referral_code_max_attempts: int = 10

    # Referral rewards
    referral_bonus_mode: Literal["fixed", "percentage"] = "fixed"
    referral_bonus_credits: int = 2
    referral_bonus_percent: float = 10.0
    referral_reward_referrer: bool = True
    referral_reward_referred: bool = True

    # Password reset
    reset_token_ttl_minutes: int = 60

    # Settlement
    settlement_max_attempts: int = 5

    @property
    def base_url(self) -> str:
        """Frontend base URL used in email links."""
        return self.frontend_url or self.allowed_origins.split(",")[0].strip()


# Global settings instance
settings = Settings()

# ── Security validation ──────────────────────────────────────────────
if settings.env == "production":
    if settings.jwt_secret_key in _INSECURE_JWT_DEFAULTS or len(settings.jwt_secret_key) < 32:
        print(
            "\nFATAL: JWT_SECRET_KEY is insecure or too short (min 32 chars).\n"
            "   Set a strong random value:  openssl rand -hex 32\n",
            file=sys.stderr,
        )
        sys.exit(1)
