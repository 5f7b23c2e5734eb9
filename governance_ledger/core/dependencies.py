"""FastAPI dependency aliases."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from .database import get_session

# Type alias for cleaner dependency injection
SessionDep = Annotated[AsyncSession, Depends(get_session)]
