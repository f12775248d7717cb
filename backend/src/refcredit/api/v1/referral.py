"""Referral API v1 endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from refcredit.api.responses import raise_for_failure
from refcredit.auth.middleware import get_current_user, require_auth
from refcredit.auth.models import UserAccount
from refcredit.referral.service import referral_service

router = APIRouter(prefix="/referral", tags=["referral"])


# ==================== MODELS ====================


class ValidateCodeResponse(BaseModel):
    """Response from code validation."""
    valid: bool
    referral_code: str
    referrer_name: str


class ReferralStatsResponse(BaseModel):
    """Response with referral statistics."""
    code: str
    link: str
    total_referrals: int
    completed_referrals: int
    pending_referrals: int
    credits_earned: int
    credits: int
    conversion_rate: float


# ==================== ENDPOINTS ====================


@router.get("/validate/{code}", response_model=ValidateCodeResponse)
async def validate_referral_code(code: str, user: UserAccount | None = Depends(get_current_user)):
    """Check a referral code before registration.

    Signed-in callers are rejected when the code is their own.
    """
    result = referral_service.validate_referral_code(code, current_user_id=user.id if user else None)
    raise_for_failure(result)

    info = result.value
    return ValidateCodeResponse(
        valid=True,
        referral_code=info.referral_code,
        referrer_name=f"{info.first_name} {info.last_name}",
    )


@router.get("/stats", response_model=ReferralStatsResponse)
async def get_referral_stats(user: UserAccount = Depends(require_auth)):
    """Get referral statistics for current user."""
    stats = referral_service.get_referral_stats(user.id)
    if not stats:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    return ReferralStatsResponse(**stats)
