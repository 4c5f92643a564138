from app.models.billing import BillingEvent, BillingEventType
from app.models.referral import Referral, ReferralCode, ReferralStatus
from app.models.special_code import SpecialCode
from app.models.student import Student, StudentSubscriptionStatus

__all__ = [
    "BillingEvent",
    "BillingEventType",
    "Referral",
    "ReferralCode",
    "ReferralStatus",
    "SpecialCode",
    "Student",
    "StudentSubscriptionStatus",
]
