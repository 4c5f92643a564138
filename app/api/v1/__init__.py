from app.api.v1 import billing, internal, referrals

__all__ = [
    "billing",
    "internal",
    "referrals",
]
