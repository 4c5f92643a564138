"""Referral models - per-student codes and referral edges."""

import uuid as uuid_pkg
from datetime import UTC, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlmodel import Field, Relationship, SQLModel

from app.models.base import UUIDMixin
from app.models.student import Student


class ReferralStatus(str, Enum):
    """Referral edge lifecycle, mirroring the referred student's subscription."""

    PENDING = "pending"
    TRIAL = "trial"
    ACTIVE = "active"
    CANCELLED = "cancelled"


class ReferralCode(UUIDMixin, SQLModel, table=True):
    """
    A student's shareable referral code.

    One code per student, created lazily the first time it is read.
    Codes are immutable once created.
    """

    __tablename__ = "referral_codes"

    student_id: uuid_pkg.UUID = Field(
        sa_column=Column(
            PG_UUID(as_uuid=True),
            ForeignKey("students.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
    )
    code: str = Field(
        sa_column=Column(String(20), nullable=False, unique=True, index=True),
    )
    created_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=lambda: datetime.now(UTC),
        nullable=False,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"server_default": text("now()")},
    )

    # Relationships
    student: Optional["Student"] = Relationship()


class Referral(UUIDMixin, SQLModel, table=True):
    """
    Referral edge: a referrer student's code was used by another account.

    At most one edge per (code, referred account). The referred student is
    attached once their checkout completes.
    """

    __tablename__ = "referrals"
    __table_args__ = (
        UniqueConstraint("referral_code", "referred_user_id", name="uq_referrals_code_referred_user"),
    )

    referrer_student_id: uuid_pkg.UUID = Field(
        sa_column=Column(
            PG_UUID(as_uuid=True),
            ForeignKey("students.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    referred_user_id: uuid_pkg.UUID = Field(
        sa_column=Column(PG_UUID(as_uuid=True), nullable=False, index=True),
    )
    referred_student_id: uuid_pkg.UUID | None = Field(
        default=None,
        sa_column=Column(
            PG_UUID(as_uuid=True),
            ForeignKey("students.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
    )
    referral_code: str = Field(
        sa_column=Column(String(20), nullable=False, index=True),
    )
    status: str = Field(
        default=ReferralStatus.PENDING.value,
        sa_column=Column(
            String(20),
            nullable=False,
            index=True,
            server_default=ReferralStatus.PENDING.value,
        ),
    )

    signed_up_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=lambda: datetime.now(UTC),
        nullable=False,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"server_default": text("now()")},
    )
    activated_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
    cancelled_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
