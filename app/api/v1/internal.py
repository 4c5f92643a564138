"""Internal API endpoints, protected by shared secret, not user auth.

These endpoints are called by cron jobs / external schedulers, not by
human users. They validate a shared secret via the X-Cron-Secret header.
"""

import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Header, HTTPException, status

from app.api.deps import DbSession, StripeDep
from app.config.settings import settings
from app.tasks.reconcile_discounts import reconcile_all_discounts

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal", tags=["internal"])


def _verify_cron_secret(x_cron_secret: str) -> None:
    """Validate the X-Cron-Secret header against the configured secret."""
    if not settings.cron_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cron secret not configured",
        )
    if x_cron_secret != settings.cron_secret:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid cron secret",
        )


@router.post("/reconcile-discounts")
async def trigger_discount_sweep(
    db: DbSession,
    stripe: StripeDep,
    x_cron_secret: str = Header(...),
) -> dict[str, Any]:
    """
    Re-push the referral discount of every student with a live subscription.

    Protected by X-Cron-Secret header. Same work as the scheduled daily sweep.
    """
    _verify_cron_secret(x_cron_secret)

    report = await reconcile_all_discounts(db, stripe)
    await db.commit()

    logger.info(
        f"Discount sweep via cron: {report.students_synced} synced, "
        f"{report.students_failed} failed"
    )
    return asdict(report)
