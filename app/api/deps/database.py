"""Database session dependency."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db

# Type alias for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
