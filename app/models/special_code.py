"""Special code model - admin-issued enrollment fee promotions."""

from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, Index, String
from sqlmodel import Field, SQLModel

from app.models.base import TimestampMixin, UUIDMixin


class SpecialCode(UUIDMixin, TimestampMixin, SQLModel, table=True):
    """
    Platform-managed promotional codes.

    Created by admins directly in the DB. A special code takes a percentage
    off the one-time enrollment fee; it never affects the monthly price.
    Special codes are checked before peer referral codes.
    """

    __tablename__ = "special_codes"
    __table_args__ = (
        Index("ix_special_codes_code", "code", unique=True),
        CheckConstraint(
            "discount_percent BETWEEN 0 AND 100", name="ck_special_codes_discount_percent"
        ),
    )

    code: str = Field(
        sa_column=Column(String(50), nullable=False),
    )
    description: str | None = Field(default=None, max_length=500, nullable=True)
    discount_percent: int = Field(nullable=False)
    is_active: bool = Field(default=True, nullable=False)
    expires_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now
