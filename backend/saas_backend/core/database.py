"""
Database infrastructure.

This module provides factories for the async SQLAlchemy engine and session
factory, and the declarative base for all database models.

There is no module-level engine: the application lifespan builds one with
build_engine() and passes the session factory explicitly to every component
that needs storage, and disposes it on shutdown.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import Pool

# Configure logger
logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """
    Base class for all database models.

    All timestamps use UTC to prevent timezone confusion in multi-tenant
    and multi-region deployments.
    """


class TimestampMixin:
    """Adds created_at / updated_at columns maintained by the ORM."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )


def normalize_database_url(url: str) -> str:
    """Use the asyncpg driver for plain postgresql:// URLs."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create the async engine.

    PostgreSQL gets a connection pool sized for multi-tenant load; other
    backends (SQLite in tests) use the driver defaults.

    Args:
        database_url: SQLAlchemy URL
        echo: Log SQL statements

    Returns:
        AsyncEngine: Configured engine
    """
    url = normalize_database_url(database_url)
    options: dict[str, Any] = {"echo": echo, "future": True}
    if url.startswith("postgresql"):
        options.update(
            pool_size=20,  # Support 20 concurrent database operations
            max_overflow=10,  # Allow bursts up to 30 total connections
            pool_recycle=3600,  # Recycle connections after 1 hour
            pool_reset_on_return="rollback",
        )
    return create_async_engine(url, **options)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory with explicit transaction control."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Don't expire objects after commit (avoid extra queries)
        autoflush=False,  # Explicit flush control
    )


# Connection pool event listeners for observability
@event.listens_for(Pool, "connect")
def receive_connect(dbapi_conn: Any, connection_record: Any) -> None:
    """Log when a new connection is established to the database."""
    logger.debug("Database connection established")


@event.listens_for(Pool, "checkout")
def receive_checkout(dbapi_conn: Any, connection_record: Any, connection_proxy: Any) -> None:
    """Log when a connection is checked out from the pool."""
    logger.debug("Database connection checked out from pool")


@event.listens_for(Pool, "checkin")
def receive_checkin(dbapi_conn: Any, connection_record: Any) -> None:
    """Log when a connection is returned to the pool."""
    logger.debug("Database connection returned to pool")


def _describe(engine: AsyncEngine) -> str:
    # Never log credentials
    return engine.url.render_as_string(hide_password=True)


async def init_db(engine: AsyncEngine) -> None:
    """
    Verify the database is reachable on application startup.

    Raises:
        Exception: If database connection cannot be established
    """
    try:
        async with engine.begin() as conn:
            result = await conn.execute(text("SELECT 1"))
            assert result.scalar() == 1
        logger.info(
            "Database connection established successfully",
            extra={"database_url": _describe(engine)},
        )
    except Exception as e:
        logger.error(
            "Failed to connect to database",
            extra={"error": str(e), "database_url": _describe(engine)},
            exc_info=True,
        )
        raise


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables from model metadata (tests and local development)."""
    # Register every model on Base.metadata
    import saas_backend.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    """Dispose of the connection pool on application shutdown."""
    await engine.dispose()
    logger.info("Database connections closed and pool disposed")


async def get_db_health(engine: AsyncEngine) -> dict[str, Any]:
    """
    Check database health status.

    Returns:
        dict: Health status with 'status' and optional 'error' keys
    """
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        logger.error("Database health check failed", extra={"error": str(e)}, exc_info=True)
        return {"status": "unhealthy", "database": "disconnected", "error": str(e)}
