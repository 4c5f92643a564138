"""Domain operations for special (promotional) codes."""

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.base_operations import BaseOperations
from app.models.special_code import SpecialCode


class SpecialCodeOperations(BaseOperations[SpecialCode]):
    """Lookups for admin-issued enrollment fee codes."""

    def __init__(self) -> None:
        super().__init__(SpecialCode)

    async def get_valid(
        self,
        db: AsyncSession,
        code: str,
        now: datetime | None = None,
    ) -> SpecialCode | None:
        """
        Get an active, unexpired special code.

        Returns None if the code is unknown, inactive, or past expires_at.
        """
        statement = select(SpecialCode).where(
            SpecialCode.code == code.strip().upper(),  # type: ignore[arg-type]
            SpecialCode.is_active.is_(True),  # type: ignore[attr-defined]
        )
        result = await db.execute(statement)
        special = result.scalar_one_or_none()

        if special is None:
            return None
        if special.is_expired(now or datetime.now(UTC)):
            return None
        return special


# Singleton instance
special_code_ops = SpecialCodeOperations()
