"""Pricing configuration - tuition amounts, trial and referral discount rules."""

from dataclasses import dataclass

from app.config.settings import settings


@dataclass(frozen=True)
class PricingConfig:
    """Billing rules shared by checkout and webhook reconciliation."""

    monthly_price: int  # cents
    enrollment_fee: int  # cents, one-time
    currency: str
    trial_period_days: int

    # Each active referral takes this many percent off the monthly price
    referral_discount_step: int
    max_referral_discount: int

    # Percent off the enrollment fee when a peer referral code is used
    referral_code_fee_discount: int


# Stored as stripe_subscription_id when a 100% discount bypasses Stripe entirely
FREE_SUBSCRIPTION_ID = "free_referral_100"

# Description on the one-time invoice item; also used to detect duplicates
ENROLLMENT_FEE_DESCRIPTION = "Enrollment fee"

MONTHLY_PRODUCT_NAME = "Success Academy International - Monthly Subscription"
MONTHLY_PRODUCT_DESCRIPTION = "Unlimited group classes for English & Math"


def get_pricing() -> PricingConfig:
    """Build the pricing config from current settings."""
    return PricingConfig(
        monthly_price=settings.monthly_price_cents,
        enrollment_fee=settings.enrollment_fee_cents,
        currency=settings.currency,
        trial_period_days=14,
        referral_discount_step=20,
        max_referral_discount=100,
        referral_code_fee_discount=20,
    )
