"""Billing API endpoints: tuition checkout, customer portal and Stripe webhooks."""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from stripe import StripeError

from app.api.deps import DbSession, StripeDep
from app.config import settings
from app.core.exceptions import ForbiddenError, NotFoundError, PaymentProviderError
from app.domain.billing_event_operations import billing_event_ops
from app.domain.student_operations import student_ops
from app.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    FreeEnrollmentResponse,
    PortalRequest,
    PortalResponse,
)
from app.services.checkout import build_checkout
from app.services.reconciler import WebhookContext, handle_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


# ─────────────────────────────────────────────────────────────────────────────
# Checkout & Portal
# ─────────────────────────────────────────────────────────────────────────────


@router.post("/create-checkout-session")
async def create_checkout_session(
    request: CheckoutRequest,
    db: DbSession,
    stripe: StripeDep,
) -> CheckoutResponse | FreeEnrollmentResponse:
    """
    Start enrollment checkout for a student.

    The recurring referral discount is recomputed from the student's active
    referrals; a client-supplied discountPercent is ignored. When the
    discount reaches 100% the student is activated without Stripe and the
    response carries a redirect instead of a checkout URL.
    """
    student = await student_ops.get(db, request.student_id)
    if not student:
        raise NotFoundError("Student")
    if student.parent_id != request.user_id:
        raise ForbiddenError("Student does not belong to this account")

    if request.discount_percent is not None:
        logger.debug(
            f"Ignoring client discount {request.discount_percent}% for student {student.id}"
        )

    try:
        result = await build_checkout(
            db,
            stripe,
            student=student,
            user_id=request.user_id,
            customer_email=request.customer_email,
            referral_code=request.referral_code,
        )
    except StripeError as e:
        logger.error(f"Checkout failed for student {student.id}: {e}")
        raise PaymentProviderError() from None

    if result.free:
        return FreeEnrollmentResponse(
            success=True,
            message="Free subscription activated!",
            redirect="/dashboard?success=true&free=true",
        )

    return CheckoutResponse(
        url=result.url or "",
        discount_percent=result.discount_percent,
        enrollment_fee_discount=result.enrollment_fee_discount,
        final_enrollment_fee=result.final_enrollment_fee,
    )


@router.post("/create-portal-session", response_model=PortalResponse)
async def create_portal_session(
    request: PortalRequest,
    db: DbSession,
    stripe: StripeDep,
) -> PortalResponse:
    """
    Create a Stripe Customer Portal session.

    Parents can update payment methods, view invoices, and cancel there.
    """
    student = await student_ops.get(db, request.student_id)
    if not student or not student.stripe_customer_id:
        raise NotFoundError("Billing account")

    try:
        url = stripe.create_portal_session(
            customer_id=student.stripe_customer_id,
            return_url=f"{settings.frontend_url}/dashboard",
        )
    except StripeError as e:
        logger.error(f"Portal session failed for student {student.id}: {e}")
        raise PaymentProviderError("Could not open billing portal, please try again") from None

    return PortalResponse(url=url)


# ─────────────────────────────────────────────────────────────────────────────
# Stripe Webhooks (no user auth, verified by Stripe signature)
# ─────────────────────────────────────────────────────────────────────────────


@router.post("/webhooks/stripe", response_model=None)
async def handle_stripe_webhook(
    request: Request,
    db: DbSession,
    stripe: StripeDep,
) -> dict[str, Any] | JSONResponse:
    """
    Handle Stripe webhook events.

    Verifies the webhook signature before processing. Events already
    processed are acknowledged without running again. A failing handler
    rolls back everything it wrote and answers 500 so Stripe retries.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        raise HTTPException(400, "No signature")

    # Verify signature
    try:
        event = stripe.construct_webhook_event(payload, sig_header)
    except ValueError:
        raise HTTPException(400, "Invalid webhook signature") from None

    event_type = str(event.get("type", ""))
    event_id = str(event.get("id", ""))

    logger.info(f"Received Stripe webhook: {event_type} ({event_id})")

    # Check for duplicate (idempotency)
    if await billing_event_ops.is_processed(db, event_id):
        logger.info(f"Skipping duplicate webhook: {event_id}")
        return {"received": True, "duplicate": True}

    try:
        ctx = WebhookContext(db=db, stripe=stripe, event_id=event_id)
        await handle_event(ctx, event)
        await billing_event_ops.mark_processed(db, event_id, event_type)
        await db.commit()
    except Exception as e:
        logger.exception(f"Webhook {event_type} ({event_id}) failed: {e}")
        await db.rollback()
        return JSONResponse(status_code=500, content={"error": "Webhook handler failed"})

    return {"received": True}
