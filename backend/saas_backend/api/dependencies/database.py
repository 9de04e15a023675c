"""
Database dependencies for FastAPI dependency injection.

The session factory is built in the application lifespan and held on
``app.state``; this module only manages the per-request session lifecycle.
"""

import logging
from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session.

    The session is committed when the route returns normally, rolled back
    when it raises, and always closed.

    Example:
        @router.get("/items")
        async def read_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.warning(
                "Database session rolled back due to exception",
                extra={"error": str(e)},
            )
            raise
