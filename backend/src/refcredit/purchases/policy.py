"""Referral reward policy."""

import math
from dataclasses import dataclass
from decimal import Decimal

from refcredit.settings import settings


@dataclass(frozen=True)
class RewardPolicy:
    """How many credits a qualifying purchase pays out, and to whom.

    ``fixed`` pays ``fixed_credits`` per party; ``percentage`` pays
    ``floor(amount * percent / 100)``.
    """
    mode: str = "fixed"
    fixed_credits: int = 2
    percent: float = 10.0
    reward_referrer: bool = True
    reward_referred: bool = True

    def __post_init__(self):
        if self.mode not in ("fixed", "percentage"):
            raise ValueError(f"Unknown reward mode: {self.mode}")
        if self.fixed_credits < 0 or self.percent < 0:
            raise ValueError("Reward amounts must be non-negative")

    @classmethod
    def from_settings(cls) -> "RewardPolicy":
        return cls(
            mode=settings.referral_bonus_mode,
            fixed_credits=settings.referral_bonus_credits,
            percent=settings.referral_bonus_percent,
            reward_referrer=settings.referral_reward_referrer,
            reward_referred=settings.referral_reward_referred,
        )

    def bonus_for(self, amount: Decimal) -> int:
        if self.mode == "percentage":
            return math.floor(Decimal(amount) * Decimal(str(self.percent)) / 100)
        return self.fixed_credits
