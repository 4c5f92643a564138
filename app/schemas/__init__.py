from app.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    FreeEnrollmentResponse,
    PortalRequest,
    PortalResponse,
)
from app.schemas.referrals import (
    AccountReferralsResponse,
    RecordReferralRequest,
    RecordReferralResponse,
    ReferralInfo,
    ReferralStatusRequest,
    ReferralStatusResponse,
    StudentReferralSummary,
)

__all__ = [
    "CheckoutRequest",
    "CheckoutResponse",
    "FreeEnrollmentResponse",
    "PortalRequest",
    "PortalResponse",
    "AccountReferralsResponse",
    "RecordReferralRequest",
    "RecordReferralResponse",
    "ReferralInfo",
    "ReferralStatusRequest",
    "ReferralStatusResponse",
    "StudentReferralSummary",
]
