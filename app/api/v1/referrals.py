"""Referral API endpoints: referral codes, referral edges and their status."""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from stripe import StripeError

from app.api.deps import DbSession, StripeDep
from app.core.exceptions import NotFoundError, PaymentProviderError, ValidationError
from app.domain.referral_operations import DuplicateReferralError, ReferralError, referral_ops
from app.domain.student_operations import student_ops
from app.models.referral import ReferralStatus
from app.models.student import Student
from app.schemas.referrals import (
    AccountReferralsResponse,
    RecordReferralRequest,
    RecordReferralResponse,
    ReferralInfo,
    ReferralStatusRequest,
    ReferralStatusResponse,
    StudentReferralSummary,
)
from app.services.discounts import calculate_discount
from app.services.reconciler import WebhookContext, update_referrer_discount

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/referrals", tags=["referrals"])


async def _student_summary(db: AsyncSession, student: Student) -> StudentReferralSummary:
    summary = await referral_ops.get_referral_summary(db, student.id)
    return StudentReferralSummary(
        student_id=student.id,
        student_name=student.name,
        referral_code=summary["referral_code"],
        active_referrals=summary["active_referrals"],
        discount_percent=calculate_discount(summary["active_referrals"]),
        referrals=[ReferralInfo.model_validate(r) for r in summary["referrals"]],
    )


@router.get("", response_model=None)
async def get_referrals(
    db: DbSession,
    student_id: UUID | None = Query(default=None, alias="studentId"),
    user_id: UUID | None = Query(default=None, alias="userId"),
) -> dict[str, Any]:
    """
    Get referral codes and active referrals.

    With ?studentId= returns that student's code (created on first read),
    active referrals and current discount. With ?userId= returns the same
    for every student of the account.
    """
    if student_id:
        student = await student_ops.get(db, student_id)
        if not student:
            raise NotFoundError("Student")
        return (await _student_summary(db, student)).model_dump(mode="json", by_alias=True)

    if user_id:
        students = await student_ops.get_by_parent(db, user_id)
        response = AccountReferralsResponse(
            student_referrals=[await _student_summary(db, s) for s in students]
        )
        return response.model_dump(mode="json", by_alias=True)

    raise ValidationError("Student ID or User ID is required")


@router.post("", response_model=RecordReferralResponse, status_code=status.HTTP_201_CREATED)
async def record_referral(
    request: RecordReferralRequest,
    db: DbSession,
) -> RecordReferralResponse:
    """
    Record that an account signed up with a referral code.

    Rejects unknown codes, self-referrals and repeat use of a code by the
    same account.
    """
    try:
        referral = await referral_ops.record_referral(
            db,
            code=request.referral_code,
            referred_user_id=request.referred_user_id,
        )
    except ReferralError as e:
        raise HTTPException(400, detail=str(e)) from None
    except IntegrityError:
        # Concurrent request inserted the same (code, account) pair
        raise HTTPException(400, detail=str(DuplicateReferralError())) from None

    logger.info(f"Recorded referral {referral.id} with code {referral.referral_code}")
    return RecordReferralResponse(
        success=True,
        referral=ReferralInfo.model_validate(referral),
        message="Referral recorded successfully",
    )


@router.put("/status", response_model=ReferralStatusResponse)
async def update_referral_status(
    request: ReferralStatusRequest,
    db: DbSession,
    stripe: StripeDep,
) -> ReferralStatusResponse:
    """
    Move every referral of an account to a new status.

    Activation and cancellation timestamps follow the status. Each affected
    referrer's discount is recomputed and pushed to Stripe.
    """
    valid = {s.value for s in ReferralStatus}
    if request.new_status not in valid:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(sorted(valid))}")

    edges = await referral_ops.get_for_referred_user(db, request.user_id)
    changed = await referral_ops.set_status(db, edges, request.new_status)

    ctx = WebhookContext(db=db, stripe=stripe)
    try:
        for code in sorted({edge.referral_code for edge in changed}):
            await update_referrer_discount(ctx, code)
    except StripeError as e:
        logger.error(f"Referrer discount sync failed for account {request.user_id}: {e}")
        raise PaymentProviderError("Could not update referral discount, please try again") from None

    return ReferralStatusResponse(success=True, updated=len(changed))
