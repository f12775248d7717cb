"""HTTP API for the referral credit service."""
