"""Mock object factories for unit tests.

Creates consistent mock objects that match the real model shapes.
Used in unit tests where the database and Stripe are fully mocked.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from app.services.stripe_service import StripeService


def make_mock_db() -> MagicMock:
    db = MagicMock()
    db.execute = AsyncMock()
    db.flush = AsyncMock()
    db.refresh = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.get = AsyncMock(return_value=None)
    return db


def make_mock_stripe_service() -> MagicMock:
    stripe = MagicMock(spec=StripeService)
    stripe.get_subscription.return_value = None
    stripe.get_discount_percent.return_value = 0
    stripe.has_discount.return_value = False
    stripe.list_pending_invoice_items.return_value = []
    stripe.create_invoice_item.return_value = "ii_test"
    stripe.delete_pending_invoice_items.return_value = 0
    stripe.create_checkout_session.return_value = "https://checkout.stripe.com/test"
    stripe.get_monthly_price_id.return_value = "price_monthly"
    stripe.ensure_coupon.side_effect = lambda p: f"referral_{p}off" if p > 0 else None
    return stripe


def make_mock_student(**overrides: Any) -> MagicMock:
    student = MagicMock()
    student.id = overrides.get("id", uuid.uuid4())
    student.parent_id = overrides.get("parent_id", uuid.uuid4())
    student.name = overrides.get("name", "Test Student")
    student.subscription_status = overrides.get("subscription_status", "none")
    student.monthly_price = overrides.get("monthly_price", 20000)
    student.stripe_customer_id = overrides.get("stripe_customer_id")
    student.stripe_subscription_id = overrides.get("stripe_subscription_id")
    student.enrollment_fee_charged = overrides.get("enrollment_fee_charged", False)
    student.trial_start_date = overrides.get("trial_start_date")
    student.trial_end_date = overrides.get("trial_end_date")
    student.subscription_start_date = overrides.get("subscription_start_date")
    student.created_at = overrides.get("created_at", datetime.now(UTC))
    student.updated_at = overrides.get("updated_at", datetime.now(UTC))
    return student


def make_mock_referral_code(**overrides: Any) -> MagicMock:
    code = MagicMock()
    code.id = overrides.get("id", uuid.uuid4())
    code.code = overrides.get("code", "K7QX2M")
    code.student = overrides.get("student")
    code.student_id = overrides.get(
        "student_id", code.student.id if code.student is not None else uuid.uuid4()
    )
    code.created_at = overrides.get("created_at", datetime.now(UTC))
    return code


def make_mock_referral(**overrides: Any) -> MagicMock:
    referral = MagicMock()
    referral.id = overrides.get("id", uuid.uuid4())
    referral.referrer_student_id = overrides.get("referrer_student_id", uuid.uuid4())
    referral.referred_user_id = overrides.get("referred_user_id", uuid.uuid4())
    referral.referred_student_id = overrides.get("referred_student_id")
    referral.referral_code = overrides.get("referral_code", "K7QX2M")
    referral.status = overrides.get("status", "trial")
    referral.signed_up_at = overrides.get("signed_up_at", datetime.now(UTC))
    referral.activated_at = overrides.get("activated_at")
    referral.cancelled_at = overrides.get("cancelled_at")
    return referral


def make_mock_special_code(**overrides: Any) -> MagicMock:
    special = MagicMock()
    special.id = overrides.get("id", uuid.uuid4())
    special.code = overrides.get("code", "SPRING50")
    special.discount_percent = overrides.get("discount_percent", 50)
    special.is_active = overrides.get("is_active", True)
    special.expires_at = overrides.get("expires_at")
    return special


async def apply_updates(_db: Any, obj: Any, obj_in: dict[str, Any]) -> Any:
    """side_effect for a mocked ops.update(): applies the dict like the real one."""
    for field, value in obj_in.items():
        setattr(obj, field, value)
    return obj


def mock_scalars_result(values: list) -> MagicMock:
    """Create a mock execute() result that yields values via .scalars().all()."""
    result = MagicMock()
    result.scalars.return_value.all.return_value = values
    result.scalars.return_value.first.return_value = values[0] if values else None
    return result


def mock_scalar_result(value: object) -> MagicMock:
    """Create a mock execute() result that yields a single value."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    result.scalar.return_value = value
    return result


def mock_rowcount_result(rowcount: int) -> MagicMock:
    """Create a mock execute() result for an UPDATE statement."""
    result = MagicMock()
    result.rowcount = rowcount
    return result


def make_webhook_event(event_id: str, event_type: str, obj: dict) -> dict:
    """Build a minimal Stripe webhook event dict."""
    return {
        "id": event_id,
        "type": event_type,
        "data": {"object": obj},
    }


def make_stripe_object(cls: Any, values: dict[str, Any]) -> Any:
    """Real SDK object (e.g. stripe.Subscription) as an API call returns it."""
    return cls.construct_from(values, "sk_test_123")
