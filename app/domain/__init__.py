from app.domain.billing_event_operations import billing_event_ops
from app.domain.referral_operations import referral_ops
from app.domain.special_code_operations import special_code_ops
from app.domain.student_operations import student_ops

__all__ = [
    "billing_event_ops",
    "referral_ops",
    "special_code_ops",
    "student_ops",
]
