"""Referral system module.

Every user gets a unique code. A user who registers with someone's code gets
a pending referral; the referral completes on that user's first purchase and
pays a bonus to both parties.
"""

from refcredit.referral.models import Referral, ReferralStatus
from refcredit.referral.service import ReferralService, referral_service

__all__ = ["Referral", "ReferralService", "ReferralStatus", "referral_service"]
