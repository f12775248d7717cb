"""Authentication: user accounts, credentials and password resets."""

from refcredit.auth.local import LocalAuthService, auth_service
from refcredit.auth.models import PasswordResetToken, UserAccount, UserProfile
from refcredit.auth.reset import ResetFlowController, reset_controller

__all__ = [
    "LocalAuthService",
    "PasswordResetToken",
    "ResetFlowController",
    "UserAccount",
    "UserProfile",
    "auth_service",
    "reset_controller",
]
