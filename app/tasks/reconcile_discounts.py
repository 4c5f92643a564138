"""
Referral discount sweep: re-push every subscribed student's discount.

Webhook reconciliation keeps discounts correct event by event; this sweep is
the standing repair for drift (a missed event, a failed coupon swap, a price
written before checkout was abandoned). Run daily by the scheduler, through
POST /api/v1/internal/reconcile-discounts, or by hand:

Usage:
    python -m app.tasks.reconcile_discounts
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession
from stripe import StripeError

from app.core.database import async_session_maker
from app.domain.student_operations import student_ops
from app.services.reconciler import WebhookContext, sync_student_discount
from app.services.stripe_service import StripeService, build_stripe_service

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    students_checked: int = 0
    students_synced: int = 0
    students_failed: int = 0
    failed_student_ids: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0


async def reconcile_all_discounts(db: AsyncSession, stripe: StripeService) -> SweepReport:
    """
    Sync the referral discount of every student with a live Stripe subscription.

    Each student runs in a savepoint: a Stripe failure rolls back only that
    student's writes and the sweep moves on. Callers commit.
    """
    started = time.monotonic()
    report = SweepReport()
    ctx = WebhookContext(db=db, stripe=stripe)

    students = await student_ops.get_with_live_subscription(db)
    logger.info(f"Discount sweep: {len(students)} students with live subscriptions")

    for student in students:
        report.students_checked += 1
        try:
            async with db.begin_nested():
                percent = await sync_student_discount(ctx, student)
        except StripeError as e:
            logger.error(f"Discount sweep failed for student {student.id}: {e}")
            report.students_failed += 1
            report.failed_student_ids.append(str(student.id))
            continue
        if percent is not None:
            report.students_synced += 1

    report.duration_seconds = round(time.monotonic() - started, 2)
    return report


async def run_sweep() -> SweepReport:
    async with async_session_maker() as db:
        report = await reconcile_all_discounts(db, build_stripe_service())
        await db.commit()
    return report


def main() -> None:
    """Run the sweep once."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    report = asyncio.run(run_sweep())
    logger.info("=" * 60)
    logger.info("Discount sweep complete!")
    logger.info(f"  Students checked: {report.students_checked}")
    logger.info(f"  Students synced: {report.students_synced}")
    logger.info(f"  Students failed: {report.students_failed}")
    logger.info("=" * 60)


if __name__ == "__main__":
    main()
