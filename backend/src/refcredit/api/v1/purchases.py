"""Purchase API v1 endpoints."""

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from refcredit.api.responses import raise_for_failure
from refcredit.auth.middleware import require_auth
from refcredit.auth.models import UserAccount
from refcredit.purchases.settlement import settlement_engine

router = APIRouter(prefix="/purchases", tags=["purchases"])


class PurchaseRequest(BaseModel):
    """Purchase to settle for the current user."""
    description: str
    amount: float | str
    currency: str
    credits_used: int = 0


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_purchase(body: PurchaseRequest, user: UserAccount = Depends(require_auth)):
    """Record a purchase for the current user.

    Redeems ``credits_used`` from the balance and, on the user's first
    qualifying purchase, pays the referral bonus.
    """
    result = await settlement_engine.settle_purchase(
        user_id=user.id,
        description=body.description,
        amount=body.amount,
        currency=body.currency,
        credits_used=body.credits_used,
    )
    raise_for_failure(result)

    return {"success": True, "message": result.message, "purchase": result.value.to_dict()}
