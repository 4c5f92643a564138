"""Pydantic schemas for referral endpoints."""

from datetime import datetime
from uuid import UUID

from app.schemas.base import CamelModel


class ReferralInfo(CamelModel):
    """One referral edge."""

    id: UUID
    referrer_student_id: UUID
    referred_user_id: UUID
    referred_student_id: UUID | None = None
    referral_code: str
    status: str  # "pending", "trial", "active", "cancelled"
    signed_up_at: datetime
    activated_at: datetime | None = None
    cancelled_at: datetime | None = None


class StudentReferralSummary(CamelModel):
    """GET /referrals?studentId= response."""

    student_id: UUID
    student_name: str
    referral_code: str
    active_referrals: int
    discount_percent: int
    referrals: list[ReferralInfo]


class AccountReferralsResponse(CamelModel):
    """GET /referrals?userId= response: one summary per student of the account."""

    student_referrals: list[StudentReferralSummary]


class RecordReferralRequest(CamelModel):
    """Request body for POST /referrals."""

    referral_code: str
    referred_user_id: UUID


class RecordReferralResponse(CamelModel):
    success: bool
    referral: ReferralInfo
    message: str


class ReferralStatusRequest(CamelModel):
    """Request body for PUT /referrals/status."""

    user_id: UUID
    new_status: str


class ReferralStatusResponse(CamelModel):
    success: bool
    updated: int
