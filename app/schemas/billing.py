"""Pydantic schemas for billing endpoints."""

from uuid import UUID

from app.schemas.base import CamelModel


class CheckoutRequest(CamelModel):
    """Request body for POST /billing/create-checkout-session."""

    student_id: UUID
    user_id: UUID
    customer_email: str | None = None
    referral_code: str | None = None
    # Accepted from older clients but never used: the discount is recomputed
    discount_percent: int | None = None


class CheckoutResponse(CamelModel):
    """Checkout session created; redirect the parent to url."""

    url: str
    discount_percent: int
    enrollment_fee_discount: int
    final_enrollment_fee: int  # cents


class FreeEnrollmentResponse(CamelModel):
    """Enrollment activated without Stripe (100% referral discount)."""

    success: bool
    message: str
    redirect: str


class PortalRequest(CamelModel):
    """Request body for POST /billing/create-portal-session."""

    student_id: UUID


class PortalResponse(CamelModel):
    url: str
