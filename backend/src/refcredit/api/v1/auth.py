"""Authentication API v1 endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from refcredit.api.rate_limit import limiter
from refcredit.api.responses import raise_for_failure
from refcredit.auth.local import auth_service
from refcredit.auth.middleware import require_auth
from refcredit.auth.models import UserAccount, UserProfile
from refcredit.auth.reset import reset_controller
from refcredit.logging_config import get_logger
from refcredit.referral.service import referral_service
from refcredit.settings import settings

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# ==================== MODELS ====================


class RegisterRequest(BaseModel):
    """User registration request.

    Field rules are checked by the registration service so every problem
    is reported in one response.
    """
    email: str
    password: str
    first_name: str
    last_name: str
    referral_code: str | None = None


class LoginRequest(BaseModel):
    """User login request."""
    email: str
    password: str


class ForgotPasswordRequest(BaseModel):
    """Password reset request."""
    email: str


class ResetPasswordConfirm(BaseModel):
    """Password reset confirmation."""
    token: str
    new_password: str


class TokenResponse(BaseModel):
    """JWT token response."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserProfile


def _token_response(user: UserAccount) -> TokenResponse:
    return TokenResponse(
        access_token=auth_service.create_access_token(user),
        expires_in=settings.jwt_expire_hours * 3600,
        user=UserProfile.model_validate(user),
    )


# ==================== ENDPOINTS ====================


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def register(request: Request, body: RegisterRequest):
    """Register a new account, optionally with a referral code.

    A referral code links the new account to its referrer; the bonus is
    paid when the new user completes a first purchase.
    """
    result = await referral_service.register_with_optional_referral(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        referral_code=body.referral_code,
    )
    raise_for_failure(result)

    return _token_response(result.value.user)


@router.post("/login", response_model=TokenResponse)
@limiter.limit("10/minute")
async def login(request: Request, body: LoginRequest):
    """Login with email and password.

    Returns JWT access token for authentication.
    """
    user = auth_service.authenticate(body.email, body.password)

    if not user:
        logger.warning(
            "login_failed",
            ip=request.client.host if request.client else "unknown",
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    logger.info("user_logged_in", user_id=user.id)
    return _token_response(user)


@router.get("/me", response_model=UserProfile)
async def get_current_user_info(user: UserAccount = Depends(require_auth)):
    """Get current user information."""
    return UserProfile.model_validate(user)


@router.post("/forgot-password")
@limiter.limit("3/minute")
async def forgot_password(request: Request, body: ForgotPasswordRequest):
    """Request password reset email.

    Known and unknown emails get the same response.
    """
    result = await reset_controller.request_reset(body.email)
    raise_for_failure(result)

    return {"success": True, "message": result.message}


@router.post("/reset-password")
@limiter.limit("5/minute")
async def reset_password(request: Request, body: ResetPasswordConfirm):
    """Reset password with token."""
    result = await reset_controller.consume_reset(body.token, body.new_password)
    raise_for_failure(result)

    return {"success": True, "message": result.message}
