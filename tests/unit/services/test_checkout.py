"""Unit tests for checkout code resolution and session building."""

import uuid
from unittest.mock import AsyncMock, patch

import pytest
from stripe import StripeError

from app.config.pricing import FREE_SUBSCRIPTION_ID
from app.services.checkout import (
    CODE_TYPE_REFERRAL,
    CODE_TYPE_SPECIAL,
    build_checkout,
    resolve_code,
)
from tests.helpers.mock_factories import (
    apply_updates,
    make_mock_db,
    make_mock_referral_code,
    make_mock_special_code,
    make_mock_stripe_service,
    make_mock_student,
)


@pytest.fixture
def checkout_ops():
    with (
        patch("app.services.checkout.special_code_ops") as special_code_ops,
        patch("app.services.checkout.referral_ops") as referral_ops,
        patch("app.services.checkout.student_ops") as student_ops,
        patch("app.services.checkout.billing_event_ops") as billing_event_ops,
    ):
        special_code_ops.get_valid = AsyncMock(return_value=None)
        referral_ops.get_by_code = AsyncMock(return_value=None)
        referral_ops.count_active = AsyncMock(return_value=0)
        student_ops.update = AsyncMock(side_effect=apply_updates)
        billing_event_ops.log_event = AsyncMock()
        yield {
            "special": special_code_ops,
            "referral": referral_ops,
            "student": student_ops,
            "billing": billing_event_ops,
        }


class TestResolveCode:
    @pytest.mark.asyncio
    async def test_empty_code(self, checkout_ops):
        resolution = await resolve_code(make_mock_db(), "  ", uuid.uuid4())

        assert resolution.code is None
        assert resolution.fee_discount_percent == 0
        checkout_ops["special"].get_valid.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_special_code_checked_first(self, checkout_ops):
        checkout_ops["special"].get_valid.return_value = make_mock_special_code(
            code="SPRING50", discount_percent=50
        )

        resolution = await resolve_code(make_mock_db(), "spring50", uuid.uuid4())

        assert resolution.code_type == CODE_TYPE_SPECIAL
        assert resolution.fee_discount_percent == 50
        assert resolution.referrer_student_id is None
        checkout_ops["referral"].get_by_code.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_special_code_falls_back_to_referral_code(self, checkout_ops):
        referrer = make_mock_student()
        checkout_ops["referral"].get_by_code.return_value = make_mock_referral_code(
            code="K7QX2M", student=referrer
        )

        resolution = await resolve_code(make_mock_db(), "K7QX2M", uuid.uuid4())

        assert resolution.code_type == CODE_TYPE_REFERRAL
        assert resolution.fee_discount_percent == 20
        assert resolution.referrer_student_id == referrer.id

    @pytest.mark.asyncio
    async def test_own_family_referral_code_is_ignored(self, checkout_ops):
        parent_id = uuid.uuid4()
        sibling = make_mock_student(parent_id=parent_id)
        checkout_ops["referral"].get_by_code.return_value = make_mock_referral_code(student=sibling)

        resolution = await resolve_code(make_mock_db(), "K7QX2M", parent_id)

        assert resolution.code is None
        assert resolution.fee_discount_percent == 0

    @pytest.mark.asyncio
    async def test_unknown_code(self, checkout_ops):
        resolution = await resolve_code(make_mock_db(), "NOPE", uuid.uuid4())

        assert resolution.code is None
        assert resolution.code_type is None


class TestBuildCheckout:
    @pytest.mark.asyncio
    async def test_recurring_discount_from_active_referrals(self, checkout_ops):
        """Two active referrals give a 40% forever coupon on the session."""
        checkout_ops["referral"].count_active.return_value = 2
        stripe = make_mock_stripe_service()
        student = make_mock_student()
        user_id = student.parent_id

        result = await build_checkout(
            make_mock_db(),
            stripe,
            student=student,
            user_id=user_id,
            customer_email="parent@example.com",
        )

        assert result.discount_percent == 40
        assert result.url == "https://checkout.stripe.com/test"
        assert result.final_enrollment_fee == 5000
        assert result.free is False

        stripe.ensure_coupon.assert_called_once_with(40)
        kwargs = stripe.create_checkout_session.call_args[1]
        assert kwargs["coupon_id"] == "referral_40off"
        assert kwargs["trial_period_days"] == 14
        assert kwargs["client_reference_id"] == str(student.id)
        assert kwargs["metadata"]["discount_percent"] == "40"
        assert kwargs["metadata"]["user_id"] == str(user_id)
        assert kwargs["metadata"]["enrollment_fee"] == "5000"
        assert student.monthly_price == 12000

    @pytest.mark.asyncio
    async def test_referral_code_discounts_enrollment_fee(self, checkout_ops):
        referrer = make_mock_student()
        checkout_ops["referral"].get_by_code.return_value = make_mock_referral_code(
            code="K7QX2M", student=referrer
        )
        stripe = make_mock_stripe_service()
        student = make_mock_student()

        result = await build_checkout(
            make_mock_db(),
            stripe,
            student=student,
            user_id=student.parent_id,
            customer_email=None,
            referral_code="K7QX2M",
        )

        assert result.enrollment_fee_discount == 20
        assert result.final_enrollment_fee == 4000
        metadata = stripe.create_checkout_session.call_args[1]["metadata"]
        assert metadata["referrer_student_id"] == str(referrer.id)
        assert metadata["referral_code"] == "K7QX2M"
        assert metadata["code_type"] == CODE_TYPE_REFERRAL
        assert stripe.create_checkout_session.call_args[1]["coupon_id"] is None

    @pytest.mark.asyncio
    async def test_full_discount_activates_without_stripe(self, checkout_ops):
        checkout_ops["referral"].count_active.return_value = 5
        stripe = make_mock_stripe_service()
        student = make_mock_student()

        result = await build_checkout(
            make_mock_db(),
            stripe,
            student=student,
            user_id=student.parent_id,
            customer_email="parent@example.com",
        )

        assert result.free is True
        assert result.url is None
        assert student.subscription_status == "active"
        assert student.stripe_subscription_id == FREE_SUBSCRIPTION_ID
        assert student.monthly_price == 0
        stripe.get_monthly_price_id.assert_not_called()
        stripe.ensure_coupon.assert_not_called()
        stripe.create_checkout_session.assert_not_called()
        checkout_ops["billing"].log_event.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stripe_failure_persists_nothing(self, checkout_ops):
        checkout_ops["referral"].count_active.return_value = 1
        stripe = make_mock_stripe_service()
        stripe.create_checkout_session.side_effect = StripeError("rate limited")
        student = make_mock_student(monthly_price=20000)

        with pytest.raises(StripeError):
            await build_checkout(
                make_mock_db(),
                stripe,
                student=student,
                user_id=student.parent_id,
                customer_email=None,
            )

        checkout_ops["student"].update.assert_not_awaited()
        assert student.monthly_price == 20000
