"""Domain operations for Student model."""

import uuid as uuid_pkg
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.pricing import FREE_SUBSCRIPTION_ID
from app.domain.base_operations import BaseOperations
from app.models.student import Student, StudentSubscriptionStatus


class StudentOperations(BaseOperations[Student]):
    """Reads and billing writes for students."""

    def __init__(self) -> None:
        super().__init__(Student)

    async def get_by_parent(
        self,
        db: AsyncSession,
        parent_id: uuid_pkg.UUID,
    ) -> list[Student]:
        """Get all students owned by a parent account, oldest first."""
        statement = (
            select(Student)
            .where(Student.parent_id == parent_id)  # type: ignore[arg-type]
            .order_by(Student.created_at.asc())  # type: ignore[attr-defined]
        )
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def get_by_stripe_subscription(
        self,
        db: AsyncSession,
        stripe_subscription_id: str,
    ) -> Student | None:
        """Get the student billed by a Stripe subscription."""
        statement = select(Student).where(
            Student.stripe_subscription_id == stripe_subscription_id  # type: ignore[arg-type]
        )
        result = await db.execute(statement)
        return result.scalars().first()

    async def get_with_live_subscription(self, db: AsyncSession) -> list[Student]:
        """
        Get students that have a real Stripe subscription.

        Excludes students on the free (100% referral) sentinel and
        cancelled students.
        """
        statement = select(Student).where(
            Student.stripe_subscription_id.is_not(None),  # type: ignore[union-attr]
            Student.stripe_subscription_id != FREE_SUBSCRIPTION_ID,  # type: ignore[arg-type]
            Student.subscription_status != StudentSubscriptionStatus.CANCELLED.value,  # type: ignore[arg-type]
        )
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def update(
        self,
        db: AsyncSession,
        db_obj: Student,
        obj_in: dict[str, Any],
    ) -> Student:
        """Update a student, stamping updated_at."""
        return await super().update(db, db_obj, {**obj_in, "updated_at": datetime.now(UTC)})

    async def claim_enrollment_fee(
        self,
        db: AsyncSession,
        student_id: uuid_pkg.UUID,
    ) -> bool:
        """
        Flip enrollment_fee_charged false -> true in one conditional UPDATE.

        Returns True only for the caller whose UPDATE changed the row. A
        concurrent transaction doing the same blocks on the row lock and
        then matches zero rows once the first commits.
        """
        statement = (
            update(Student)
            .where(
                Student.id == student_id,  # type: ignore[arg-type]
                Student.enrollment_fee_charged.is_(False),  # type: ignore[attr-defined]
            )
            .values(enrollment_fee_charged=True, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(statement)
        return result.rowcount == 1

    async def set_enrollment_fee_charged(
        self,
        db: AsyncSession,
        student_id: uuid_pkg.UUID,
        charged: bool,
    ) -> None:
        """Unconditionally set the enrollment fee flag."""
        statement = (
            update(Student)
            .where(Student.id == student_id)  # type: ignore[arg-type]
            .values(enrollment_fee_charged=charged, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        await db.execute(statement)


# Singleton instance
student_ops = StudentOperations()
