"""Domain operations for the billing audit log and webhook idempotency."""

import uuid as uuid_pkg
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.base_operations import BaseOperations
from app.models.billing import BillingEvent, BillingEventType


class BillingEventOperations(BaseOperations[BillingEvent]):
    """Append-only billing audit log."""

    def __init__(self) -> None:
        super().__init__(BillingEvent)

    async def log_event(
        self,
        db: AsyncSession,
        event_type: BillingEventType,
        student_id: uuid_pkg.UUID | None = None,
        previous_value: dict[str, Any] | None = None,
        new_value: dict[str, Any] | None = None,
        stripe_event_id: str | None = None,
        description: str | None = None,
    ) -> BillingEvent:
        """Log a billing event for audit trail."""
        event = BillingEvent(
            student_id=student_id,
            event_type=event_type.value,
            previous_value=previous_value,
            new_value=new_value,
            stripe_event_id=stripe_event_id,
            description=description,
        )
        db.add(event)
        await db.flush()
        return event

    async def is_processed(
        self,
        db: AsyncSession,
        stripe_event_id: str,
    ) -> bool:
        """Check whether a Stripe event was already fully processed."""
        statement = (
            select(BillingEvent.id)
            .where(
                BillingEvent.stripe_event_id == stripe_event_id,  # type: ignore[arg-type]
                BillingEvent.event_type == BillingEventType.WEBHOOK_PROCESSED.value,  # type: ignore[arg-type]
            )
            .limit(1)
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none() is not None

    async def mark_processed(
        self,
        db: AsyncSession,
        stripe_event_id: str,
        event_type: str,
    ) -> BillingEvent:
        return await self.log_event(
            db,
            event_type=BillingEventType.WEBHOOK_PROCESSED,
            stripe_event_id=stripe_event_id,
            new_value={"type": event_type},
        )


# Singleton instance
billing_event_ops = BillingEventOperations()
