"""Student model - enrollment and subscription billing state."""

import uuid as uuid_pkg
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, text
from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, UUIDMixin


class StudentSubscriptionStatus(str, Enum):
    """Local subscription lifecycle states for a student."""

    NONE = "none"
    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"


class Student(UUIDMixin, TimestampMixin, SQLModel, table=True):
    """
    Student model - one enrolled child of a parent account.

    Billing fields are written by checkout and by Stripe webhook
    reconciliation. Students are never hard-deleted; cancellation is a
    status transition and a re-enrollment starts a fresh cycle.
    """

    __tablename__ = "students"

    parent_id: uuid_pkg.UUID = Field(
        nullable=False,
        index=True,
        sa_column_kwargs={"comment": "Owning parent account (auth user id)"},
    )
    name: str = Field(default="", max_length=255, nullable=False)

    subscription_status: str = Field(
        default=StudentSubscriptionStatus.NONE.value,
        max_length=20,
        nullable=False,
        sa_column_kwargs={"server_default": StudentSubscriptionStatus.NONE.value},
    )
    monthly_price: int = Field(
        default=0,
        nullable=False,
        sa_column_kwargs={
            "server_default": text("0"),
            "comment": "Discounted monthly price in cents (display cache)",
        },
    )

    # Stripe references (null until checkout completes)
    stripe_customer_id: str | None = Field(default=None, max_length=255, nullable=True, index=True)
    stripe_subscription_id: str | None = Field(
        default=None, max_length=255, nullable=True, index=True
    )

    # One-time fee ledger flag, flipped false->true by compare-and-set
    enrollment_fee_charged: bool = Field(
        default=False,
        nullable=False,
        sa_column_kwargs={"server_default": text("false")},
    )

    trial_start_date: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
    trial_end_date: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
    subscription_start_date: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
