"""Checkout session builder.

Resolves the code the parent entered, recomputes the student's recurring
referral discount from current referral edges, and either creates a Stripe
Checkout session or activates a fully discounted enrollment without Stripe.
"""

import logging
import uuid as uuid_pkg
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.config.pricing import (
    FREE_SUBSCRIPTION_ID,
    MONTHLY_PRODUCT_DESCRIPTION,
    MONTHLY_PRODUCT_NAME,
    get_pricing,
)
from app.domain.billing_event_operations import billing_event_ops
from app.domain.referral_operations import referral_ops
from app.domain.special_code_operations import special_code_ops
from app.domain.student_operations import student_ops
from app.models.billing import BillingEventType
from app.models.student import Student, StudentSubscriptionStatus
from app.services.discounts import calculate_discount, discounted_price
from app.services.stripe_service import StripeService

logger = logging.getLogger(__name__)

CODE_TYPE_SPECIAL = "special"
CODE_TYPE_REFERRAL = "referral"


@dataclass
class CodeResolution:
    """What an entered code is worth. Empty when the code matched nothing."""

    code: str | None = None
    code_type: str | None = None
    fee_discount_percent: int = 0
    referrer_student_id: uuid_pkg.UUID | None = None


@dataclass
class CheckoutResult:
    discount_percent: int
    enrollment_fee_discount: int
    final_enrollment_fee: int
    url: str | None = None
    free: bool = False


async def resolve_code(
    db: AsyncSession,
    code: str | None,
    parent_id: uuid_pkg.UUID,
) -> CodeResolution:
    """
    Resolve an entered code against special codes first, then referral codes.

    A special code must be active and unexpired. A referral code gives the
    standard referral discount on the enrollment fee unless it belongs to a
    student of the same parent account.
    """
    if not code or not code.strip():
        return CodeResolution()

    special = await special_code_ops.get_valid(db, code)
    if special:
        return CodeResolution(
            code=special.code,
            code_type=CODE_TYPE_SPECIAL,
            fee_discount_percent=special.discount_percent,
        )

    referral_code = await referral_ops.get_by_code(db, code)
    if referral_code:
        owner = referral_code.student
        if owner is not None and owner.parent_id == parent_id:
            logger.warning(f"Ignoring own referral code {referral_code.code} at checkout")
            return CodeResolution()
        return CodeResolution(
            code=referral_code.code,
            code_type=CODE_TYPE_REFERRAL,
            fee_discount_percent=get_pricing().referral_code_fee_discount,
            referrer_student_id=referral_code.student_id,
        )

    logger.info(f"Checkout code {code!r} matched nothing")
    return CodeResolution()


async def build_checkout(
    db: AsyncSession,
    stripe: StripeService,
    *,
    student: Student,
    user_id: uuid_pkg.UUID,
    customer_email: str | None,
    referral_code: str | None = None,
) -> CheckoutResult:
    """
    Start checkout for a student.

    The recurring discount always comes from the student's own active
    referral edges; a client-supplied percentage is never used. At 100% the
    student is activated locally with the free sentinel subscription and no
    Stripe objects are created. The discounted monthly price is persisted
    only after Stripe accepted the session.

    Raises StripeError on any Stripe failure.
    """
    pricing = get_pricing()
    resolution = await resolve_code(db, referral_code, student.parent_id)

    fee_discount = resolution.fee_discount_percent
    final_fee = discounted_price(pricing.enrollment_fee, fee_discount)

    active_count = await referral_ops.count_active(db, student.id)
    discount_percent = calculate_discount(active_count)

    if discount_percent >= pricing.max_referral_discount:
        await student_ops.update(
            db,
            student,
            {
                "subscription_status": StudentSubscriptionStatus.ACTIVE.value,
                "stripe_subscription_id": FREE_SUBSCRIPTION_ID,
                "monthly_price": 0,
                "subscription_start_date": datetime.now(UTC),
            },
        )
        await billing_event_ops.log_event(
            db,
            event_type=BillingEventType.FREE_ENROLLMENT,
            student_id=student.id,
            new_value={"discount_percent": discount_percent, "active_referrals": active_count},
            description="Free subscription activated by referral discount",
        )
        logger.info(f"Activated free subscription for student {student.id}")
        return CheckoutResult(
            discount_percent=discount_percent,
            enrollment_fee_discount=fee_discount,
            final_enrollment_fee=final_fee,
            free=True,
        )

    price_id = stripe.get_monthly_price_id(
        pricing.monthly_price,
        pricing.currency,
        MONTHLY_PRODUCT_NAME,
        MONTHLY_PRODUCT_DESCRIPTION,
    )
    coupon_id = stripe.ensure_coupon(discount_percent)

    metadata = {
        "student_id": str(student.id),
        "user_id": str(user_id),
        "discount_percent": str(discount_percent),
        "enrollment_fee": str(final_fee),
        "enrollment_fee_discount": str(fee_discount),
        "referrer_student_id": str(resolution.referrer_student_id or ""),
        "code_type": resolution.code_type or "",
        "referral_code": resolution.code or "",
    }

    url = stripe.create_checkout_session(
        price_id=price_id,
        customer_email=customer_email,
        client_reference_id=str(student.id),
        success_url=f"{settings.frontend_url}/dashboard?success=true",
        cancel_url=f"{settings.frontend_url}/checkout?cancelled=true&studentId={student.id}",
        trial_period_days=pricing.trial_period_days,
        metadata=metadata,
        coupon_id=coupon_id,
    )

    await student_ops.update(
        db,
        student,
        {"monthly_price": discounted_price(pricing.monthly_price, discount_percent)},
    )

    return CheckoutResult(
        discount_percent=discount_percent,
        enrollment_fee_discount=fee_discount,
        final_enrollment_fee=final_fee,
        url=url,
    )
