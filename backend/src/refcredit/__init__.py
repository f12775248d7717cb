"""ReferralCredit: referral codes, purchase settlement and password resets."""

__version__ = "0.1.0"
