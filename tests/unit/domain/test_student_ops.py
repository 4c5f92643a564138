"""Unit tests for StudentOperations: enrollment fee claim and lookups."""

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.domain.student_operations import StudentOperations

from tests.helpers.mock_factories import (
    make_mock_db,
    make_mock_student,
    mock_rowcount_result,
    mock_scalars_result,
)


class TestClaimEnrollmentFee:
    """The conditional UPDATE decides who charges the fee."""

    @pytest.mark.asyncio
    async def test_claim_wins_when_row_updated(self):
        db = make_mock_db()
        db.execute.return_value = mock_rowcount_result(1)

        assert await StudentOperations().claim_enrollment_fee(db, uuid.uuid4()) is True

    @pytest.mark.asyncio
    async def test_claim_loses_when_already_set(self):
        db = make_mock_db()
        db.execute.return_value = mock_rowcount_result(0)

        assert await StudentOperations().claim_enrollment_fee(db, uuid.uuid4()) is False


class TestUpdate:
    @pytest.mark.asyncio
    async def test_stamps_updated_at(self):
        db = make_mock_db()
        db.add = MagicMock()
        student = make_mock_student(updated_at=None)

        await StudentOperations().update(db, student, {"monthly_price": 12000})

        assert student.monthly_price == 12000
        assert student.updated_at is not None


class TestLookups:
    @pytest.mark.asyncio
    async def test_get_by_stripe_subscription(self):
        db = make_mock_db()
        student = make_mock_student(stripe_subscription_id="sub_1")
        db.execute = AsyncMock(return_value=mock_scalars_result([student]))

        assert await StudentOperations().get_by_stripe_subscription(db, "sub_1") is student

    @pytest.mark.asyncio
    async def test_get_by_stripe_subscription_missing(self):
        db = make_mock_db()
        db.execute = AsyncMock(return_value=mock_scalars_result([]))

        assert await StudentOperations().get_by_stripe_subscription(db, "sub_x") is None
