# Services package

from app.services.checkout import CheckoutResult, CodeResolution, build_checkout, resolve_code
from app.services.discounts import calculate_discount, discounted_price
from app.services.enrollment_fee import (
    FeeChargeOutcome,
    FeeChargeResult,
    charge_enrollment_fee_once,
)
from app.services.reconciler import WEBHOOK_HANDLERS, WebhookContext, handle_event
from app.services.stripe_service import StripeService, build_stripe_service

__all__ = [
    # Discounts & checkout
    "calculate_discount",
    "discounted_price",
    "CodeResolution",
    "CheckoutResult",
    "resolve_code",
    "build_checkout",
    # Enrollment fee ledger
    "FeeChargeOutcome",
    "FeeChargeResult",
    "charge_enrollment_fee_once",
    # Webhook reconciliation
    "WEBHOOK_HANDLERS",
    "WebhookContext",
    "handle_event",
    # Stripe
    "StripeService",
    "build_stripe_service",
]
