"""Referral discount arithmetic.

A referrer's recurring discount is never stored; it is derived from the
number of active referral edges every time it is needed.
"""

from app.config.pricing import get_pricing


def calculate_discount(active_count: int) -> int:
    """
    Percent off the monthly price for a number of active referrals.

    20% per active referral, capped at 100%. Negative counts are treated as 0.
    """
    pricing = get_pricing()
    return min(max(active_count, 0) * pricing.referral_discount_step, pricing.max_referral_discount)


def discounted_price(base_cents: int, percent: int) -> int:
    """Price in cents after a percentage discount, rounded to the nearest cent."""
    return round(base_cents * (100 - percent) / 100)
