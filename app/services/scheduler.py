"""Internal task scheduler using APScheduler.

Runs the daily referral discount sweep within the FastAPI process.
Uses PostgreSQL advisory locks to prevent duplicate execution when
multiple instances are running.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import text

from app.config import settings
from app.core.database import async_session_maker

logger = logging.getLogger(__name__)

# Advisory lock IDs (arbitrary unique integers, one per job)
DISCOUNT_SWEEP_LOCK_ID = 731904


@asynccontextmanager
async def advisory_lock(lock_id: int) -> AsyncIterator[bool]:
    """
    Acquire a PostgreSQL advisory lock for the duration of the context.

    Advisory locks are session-level and automatically released when the
    session ends. pg_try_advisory_lock() returns immediately: if another
    process holds the lock, the context yields False and the job is skipped.
    """
    async with async_session_maker() as session:
        result = await session.execute(
            text("SELECT pg_try_advisory_lock(:lock_id)"),
            {"lock_id": lock_id},
        )
        acquired = result.scalar()

        if not acquired:
            yield False
            return

        try:
            yield True
        finally:
            await session.execute(
                text("SELECT pg_advisory_unlock(:lock_id)"),
                {"lock_id": lock_id},
            )
            await session.commit()


async def run_discount_sweep() -> dict[str, Any] | None:
    """
    Execute the referral discount sweep with advisory lock protection.

    Returns the report dict if executed, None if skipped (lock held by another
    instance) or failed.
    """
    async with advisory_lock(DISCOUNT_SWEEP_LOCK_ID) as acquired:
        if not acquired:
            logger.info("[scheduler] Discount-sweep: skipped (another instance is running)")
            return None

        logger.info("[scheduler] Discount-sweep: starting")

        try:
            from app.tasks.reconcile_discounts import run_sweep

            report = await run_sweep()
            logger.info(
                f"[scheduler] Discount-sweep: completed "
                f"({report.students_synced} synced, "
                f"{report.students_failed} failed, "
                f"{report.duration_seconds}s)"
            )
            return asdict(report)

        except Exception as e:
            logger.exception(f"[scheduler] Discount-sweep: failed with error: {e}")
            return None


class Scheduler:
    """Manages the APScheduler instance and job registration."""

    def __init__(self) -> None:
        self._scheduler: AsyncIOScheduler | None = None

    def start(self) -> None:
        """Start the scheduler and register jobs."""
        if not settings.scheduler_enabled:
            logger.info("[scheduler] Disabled via SCHEDULER_ENABLED=false")
            return
        if not settings.stripe_enabled:
            logger.info("[scheduler] Stripe not configured, discount sweep not scheduled")
            return

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            run_discount_sweep,
            trigger=CronTrigger(hour=settings.discount_sweep_hour, minute=0),
            id="discount_sweep",
            name="Referral Discount Sweep",
            replace_existing=True,
        )

        self._scheduler.start()
        logger.info(
            f"[scheduler] Started with discount-sweep at "
            f"{settings.discount_sweep_hour:02d}:00 UTC"
        )

    def stop(self) -> None:
        """Gracefully shut down the scheduler."""
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            logger.info("[scheduler] Stopped")


scheduler = Scheduler()
