"""
Enrollment fee ledger - at-most-once charging of the one-time fee.

The students.enrollment_fee_charged flag is the ledger. It is claimed with a
single conditional UPDATE inside the caller's transaction before any Stripe
call, so two deliveries of the same event cannot both create an invoice item:
the second blocks on the row lock and then finds the flag already set.
"""

import logging
import uuid as uuid_pkg
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession
from stripe import StripeError

from app.config.pricing import ENROLLMENT_FEE_DESCRIPTION
from app.domain.billing_event_operations import billing_event_ops
from app.domain.student_operations import student_ops
from app.models.billing import BillingEventType
from app.models.student import Student
from app.services.stripe_service import StripeService

logger = logging.getLogger(__name__)


class FeeChargeOutcome(str, Enum):
    CHARGED = "charged"
    ALREADY_CHARGED = "already_charged"
    DUPLICATE_ITEM = "duplicate_item"
    ZERO_AMOUNT = "zero_amount"


@dataclass
class FeeChargeResult:
    outcome: FeeChargeOutcome
    invoice_item_id: str | None = None

    @property
    def charged(self) -> bool:
        return self.outcome == FeeChargeOutcome.CHARGED


async def charge_enrollment_fee_once(
    db: AsyncSession,
    stripe: StripeService,
    student_id: uuid_pkg.UUID,
    customer_id: str,
    amount_cents: int,
    currency: str = "usd",
    invoice_id: str | None = None,
    stripe_event_id: str | None = None,
) -> FeeChargeResult:
    """
    Charge the enrollment fee for a student at most once.

    Steps:
    1. Claim the ledger flag (false -> true). Losing the claim means the fee
       was already charged or is being charged by a concurrent delivery.
    2. A zero fee (100% promotional code) just keeps the flag set.
    3. Skip if an "Enrollment fee" item is already pending on the customer.
    4. Create the invoice item; on a Stripe failure release the flag and
       re-raise so the event is retried.
    """
    if not await student_ops.claim_enrollment_fee(db, student_id):
        logger.info(f"Enrollment fee already charged for student {student_id}, skipping")
        return FeeChargeResult(FeeChargeOutcome.ALREADY_CHARGED)

    if amount_cents <= 0:
        logger.info(f"Enrollment fee fully discounted for student {student_id}")
        return FeeChargeResult(FeeChargeOutcome.ZERO_AMOUNT)

    try:
        pending = stripe.list_pending_invoice_items(customer_id)
        if any(item.get("description") == ENROLLMENT_FEE_DESCRIPTION for item in pending):
            logger.warning(
                f"Pending enrollment fee item already exists for customer {customer_id}, "
                f"not creating another"
            )
            return FeeChargeResult(FeeChargeOutcome.DUPLICATE_ITEM)

        item_id = stripe.create_invoice_item(
            customer_id=customer_id,
            amount_cents=amount_cents,
            currency=currency,
            description=ENROLLMENT_FEE_DESCRIPTION,
            invoice_id=invoice_id,
            metadata={"student_id": str(student_id), "type": "enrollment_fee"},
        )
    except StripeError:
        logger.error(f"Failed to charge enrollment fee for student {student_id}, releasing flag")
        await student_ops.set_enrollment_fee_charged(db, student_id, False)
        raise

    await billing_event_ops.log_event(
        db,
        event_type=BillingEventType.ENROLLMENT_FEE_CHARGED,
        student_id=student_id,
        new_value={"amount": amount_cents, "invoice_item_id": item_id, "invoice_id": invoice_id},
        stripe_event_id=stripe_event_id,
        description=f"Enrollment fee of {amount_cents} {currency} added",
    )
    return FeeChargeResult(FeeChargeOutcome.CHARGED, invoice_item_id=item_id)


async def reset_enrollment_fee_flag(db: AsyncSession, student: Student) -> None:
    """Clear the ledger flag so a later re-enrollment is charged again."""
    if student.enrollment_fee_charged:
        logger.info(f"Resetting enrollment fee flag for student {student.id}")
    await student_ops.update(db, student, {"enrollment_fee_charged": False})
