"""Stripe client dependency.

Endpoints receive an explicitly constructed StripeService instead of using a
module-level client. Tests override get_stripe_service with a mock.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, status

from app.config import settings
from app.services.stripe_service import StripeService


def get_stripe_service() -> StripeService:
    """Build the Stripe client for a request, or 503 if Stripe is not configured."""
    if not settings.stripe_enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payments are not configured",
        )
    return StripeService(
        api_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
    )


StripeDep = Annotated[StripeService, Depends(get_stripe_service)]
