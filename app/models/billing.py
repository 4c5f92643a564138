"""Billing models - webhook and reconciliation audit trail."""

import uuid as uuid_pkg
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlmodel import Field, SQLModel


class BillingEventType(str, Enum):
    """Types of billing events for audit logging."""

    WEBHOOK_PROCESSED = "webhook.processed"
    CHECKOUT_COMPLETED = "checkout.completed"
    FREE_ENROLLMENT = "enrollment.free"
    SUBSCRIPTION_UPDATED = "subscription.updated"
    SUBSCRIPTION_CANCELED = "subscription.canceled"
    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"
    DISCOUNT_CHANGED = "discount.changed"
    ENROLLMENT_FEE_CHARGED = "enrollment_fee.charged"
    PENDING_ITEMS_REMOVED = "invoice_items.removed"
    REFERRAL_RECORDED = "referral.recorded"


class BillingEvent(SQLModel, table=True):
    """
    Billing event audit log.

    Tracks every billing-related change for audit and debugging. A
    WEBHOOK_PROCESSED row per Stripe event id doubles as the webhook
    idempotency record.
    """

    __tablename__ = "billing_events"
    __table_args__ = (Index("ix_billing_events_stripe_event", "stripe_event_id", "event_type"),)

    id: uuid_pkg.UUID = Field(
        default_factory=uuid_pkg.uuid4,
        primary_key=True,
        nullable=False,
        sa_column_kwargs={"server_default": text("gen_random_uuid()")},
    )
    student_id: uuid_pkg.UUID | None = Field(
        default=None,
        sa_column=Column(
            PG_UUID(as_uuid=True),
            ForeignKey("students.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
    )

    event_type: str = Field(
        sa_column=Column(String(50), nullable=False, index=True),
    )
    description: str | None = Field(default=None, max_length=500, nullable=True)

    # Change tracking
    previous_value: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSONB, nullable=True),
    )
    new_value: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSONB, nullable=True),
    )

    # Stripe reference (if applicable)
    stripe_event_id: str | None = Field(
        default=None,
        max_length=255,
        nullable=True,
    )

    created_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=lambda: datetime.now(UTC),
        nullable=False,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"server_default": text("now()")},
    )
