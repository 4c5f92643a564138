"""Domain operations for referral codes and referral edges."""

import logging
import random
import uuid as uuid_pkg
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.domain.base_operations import BaseOperations
from app.models.referral import Referral, ReferralCode, ReferralStatus
from app.models.student import Student

logger = logging.getLogger(__name__)

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # No I, O, 0, 1 (confusing)
CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 10


class ReferralError(ValueError):
    """A referral request broke a business rule. The message is user-facing."""


class InvalidReferralCodeError(ReferralError):
    def __init__(self) -> None:
        super().__init__("Invalid referral code")


class SelfReferralError(ReferralError):
    def __init__(self) -> None:
        super().__init__("You cannot use your own referral code")


class DuplicateReferralError(ReferralError):
    def __init__(self) -> None:
        super().__init__("This user has already been referred with this code")


def generate_referral_code() -> str:
    """Generate a random 6-character referral code, e.g. "K7QX2M"."""
    return "".join(random.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def status_timestamps(status: str, now: datetime) -> dict[str, datetime | None]:
    """Activation/cancellation stamps that go with a status write."""
    return {
        "activated_at": now if status == ReferralStatus.ACTIVE.value else None,
        "cancelled_at": now if status == ReferralStatus.CANCELLED.value else None,
    }


class ReferralOperations(BaseOperations[Referral]):
    """Referral graph store: codes, edges and active-edge counts."""

    def __init__(self) -> None:
        super().__init__(Referral)

    # ─────────────────────────────────────────────────────────────────────────
    # Codes
    # ─────────────────────────────────────────────────────────────────────────

    async def get_by_code(
        self,
        db: AsyncSession,
        code: str,
    ) -> ReferralCode | None:
        """Get a referral code (with its owning student) by code string."""
        statement = (
            select(ReferralCode)
            .where(ReferralCode.code == code.strip().upper())  # type: ignore[arg-type]
            .options(selectinload(ReferralCode.student))  # type: ignore[arg-type]
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_code_for_student(
        self,
        db: AsyncSession,
        student_id: uuid_pkg.UUID,
    ) -> ReferralCode | None:
        statement = select(ReferralCode).where(
            ReferralCode.student_id == student_id  # type: ignore[arg-type]
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_or_create_code(
        self,
        db: AsyncSession,
        student_id: uuid_pkg.UUID,
    ) -> ReferralCode:
        """
        Get a student's referral code, creating it on first read.

        Retries generation up to MAX_CODE_ATTEMPTS times on collision. Two
        first reads racing for the same student both get the row that won.
        """
        existing = await self.get_code_for_student(db, student_id)
        if existing:
            return existing

        code = generate_referral_code()
        for _ in range(MAX_CODE_ATTEMPTS):
            if not await self.get_by_code(db, code):
                break
            code = generate_referral_code()
        else:
            # Extremely unlikely - fall back to UUID-based code
            code = uuid_pkg.uuid4().hex[:8].upper()

        referral_code = ReferralCode(student_id=student_id, code=code)
        try:
            async with db.begin_nested():
                db.add(referral_code)
                await db.flush()
        except IntegrityError:
            # Another request created this student's code first
            winner = await self.get_code_for_student(db, student_id)
            if winner is None:
                raise
            return winner

        await db.refresh(referral_code)
        logger.info(f"Created referral code {code} for student {student_id}")
        return referral_code

    # ─────────────────────────────────────────────────────────────────────────
    # Edges
    # ─────────────────────────────────────────────────────────────────────────

    async def count_active(
        self,
        db: AsyncSession,
        referrer_student_id: uuid_pkg.UUID,
    ) -> int:
        """Count a referrer's currently active referral edges."""
        statement = (
            select(func.count())
            .select_from(Referral)
            .where(
                Referral.referrer_student_id == referrer_student_id,  # type: ignore[arg-type]
                Referral.status == ReferralStatus.ACTIVE.value,  # type: ignore[arg-type]
            )
        )
        result = await db.execute(statement)
        count = result.scalar()
        return int(count) if count else 0

    async def list_for_code(
        self,
        db: AsyncSession,
        code: str,
        status: str | None = None,
    ) -> list[Referral]:
        """List edges created with a code, newest first."""
        statement = select(Referral).where(
            Referral.referral_code == code.upper()  # type: ignore[arg-type]
        )
        if status:
            statement = statement.where(Referral.status == status)  # type: ignore[arg-type]
        statement = statement.order_by(Referral.signed_up_at.desc())  # type: ignore[attr-defined]
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def get_edge(
        self,
        db: AsyncSession,
        code: str,
        referred_user_id: uuid_pkg.UUID,
    ) -> Referral | None:
        statement = select(Referral).where(
            Referral.referral_code == code.upper(),  # type: ignore[arg-type]
            Referral.referred_user_id == referred_user_id,  # type: ignore[arg-type]
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_inbound(
        self,
        db: AsyncSession,
        student: Student,
    ) -> list[Referral]:
        """
        Get the edges on which a student is the referred party.

        Matches the student directly, or the parent account for edges
        recorded before the student's checkout completed.
        """
        statement = select(Referral).where(
            or_(
                Referral.referred_student_id == student.id,  # type: ignore[arg-type]
                (Referral.referred_student_id.is_(None))  # type: ignore[union-attr]
                & (Referral.referred_user_id == student.parent_id),  # type: ignore[arg-type]
            )
        )
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def get_outbound(
        self,
        db: AsyncSession,
        referrer_student_id: uuid_pkg.UUID,
    ) -> list[Referral]:
        statement = select(Referral).where(
            Referral.referrer_student_id == referrer_student_id  # type: ignore[arg-type]
        )
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def get_for_referred_user(
        self,
        db: AsyncSession,
        referred_user_id: uuid_pkg.UUID,
    ) -> list[Referral]:
        statement = select(Referral).where(
            Referral.referred_user_id == referred_user_id  # type: ignore[arg-type]
        )
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def set_status(
        self,
        db: AsyncSession,
        edges: list[Referral],
        status: str,
    ) -> list[Referral]:
        """
        Set an absolute status on edges, stamping activation/cancellation.

        Edges already in the target status are left untouched so a
        redelivered event does not move their timestamps.
        """
        now = datetime.now(UTC)
        changed = []
        for edge in edges:
            if edge.status == status:
                continue
            edge.status = status
            for field, value in status_timestamps(status, now).items():
                setattr(edge, field, value)
            db.add(edge)
            changed.append(edge)
        if changed:
            await db.flush()
        return changed

    async def record_referral(
        self,
        db: AsyncSession,
        code: str,
        referred_user_id: uuid_pkg.UUID,
    ) -> Referral:
        """
        Record that an account signed up with a referral code.

        Validates that:
        - Code exists
        - Code's owning student does not belong to the referred account
        - The account has not already been referred with this code

        Raises a ReferralError subclass on validation failure.
        """
        referral_code = await self.get_by_code(db, code)
        if not referral_code:
            raise InvalidReferralCodeError()

        owner = referral_code.student
        if owner is not None and owner.parent_id == referred_user_id:
            raise SelfReferralError()

        if await self.get_edge(db, referral_code.code, referred_user_id):
            raise DuplicateReferralError()

        edge = Referral(
            referrer_student_id=referral_code.student_id,
            referred_user_id=referred_user_id,
            referral_code=referral_code.code,
            status=ReferralStatus.TRIAL.value,
        )
        db.add(edge)
        await db.flush()
        await db.refresh(edge)
        return edge

    async def ensure_edge_for_checkout(
        self,
        db: AsyncSession,
        *,
        code: str,
        referrer_student_id: uuid_pkg.UUID,
        referred_user_id: uuid_pkg.UUID,
        referred_student_id: uuid_pkg.UUID,
        status: str,
    ) -> Referral | None:
        """
        Create (or complete) the edge for a checkout that used a referral code.

        Checks before inserting so a redelivered checkout event never adds a
        second edge. An edge recorded at signup gets the referred student
        attached. Returns None for a self-referral.
        """
        referrer = await db.get(Student, referrer_student_id)
        if referrer is not None and referrer.parent_id == referred_user_id:
            logger.warning(
                f"Ignoring self-referral: code {code} belongs to account {referred_user_id}"
            )
            return None

        existing = await self.get_edge(db, code, referred_user_id)
        if existing:
            updates: dict[str, Any] = {}
            if existing.referred_student_id is None:
                updates["referred_student_id"] = referred_student_id
            if existing.status == ReferralStatus.PENDING.value:
                updates["status"] = status
            if updates:
                await self.update(db, existing, updates)
            return existing

        edge = Referral(
            referrer_student_id=referrer_student_id,
            referred_user_id=referred_user_id,
            referred_student_id=referred_student_id,
            referral_code=code.upper(),
            status=status,
        )
        for field, value in status_timestamps(status, datetime.now(UTC)).items():
            setattr(edge, field, value)
        db.add(edge)
        await db.flush()
        await db.refresh(edge)
        logger.info(
            f"Recorded referral edge {edge.id}: code={code}, referrer={referrer_student_id}, "
            f"referred_student={referred_student_id}"
        )
        return edge

    async def get_referral_summary(
        self,
        db: AsyncSession,
        student_id: uuid_pkg.UUID,
    ) -> dict[str, Any]:
        """
        Referral summary for a student, provisioning a code if needed.

        Returns dict with:
        - referral_code: The student's code
        - active_referrals: Number of active edges
        - referrals: The active edges themselves
        """
        referral_code = await self.get_or_create_code(db, student_id)
        active = await self.list_for_code(
            db, referral_code.code, status=ReferralStatus.ACTIVE.value
        )
        return {
            "referral_code": referral_code.code,
            "active_referrals": len(active),
            "referrals": active,
        }


# Singleton instance
referral_ops = ReferralOperations()
