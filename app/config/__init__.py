"""Configuration package."""

from app.config.pricing import (
    ENROLLMENT_FEE_DESCRIPTION,
    FREE_SUBSCRIPTION_ID,
    PricingConfig,
    get_pricing,
)
from app.config.settings import Settings, settings

__all__ = [
    "ENROLLMENT_FEE_DESCRIPTION",
    "FREE_SUBSCRIPTION_ID",
    "PricingConfig",
    "get_pricing",
    "Settings",
    "settings",
]
