"""Purchase ledger and settlement engine."""

from refcredit.purchases.models import CreditTransaction, Currency, Purchase, PurchaseStatus
from refcredit.purchases.policy import RewardPolicy

__all__ = [
    "CreditTransaction",
    "Currency",
    "Purchase",
    "PurchaseStatus",
    "RewardPolicy",
]
