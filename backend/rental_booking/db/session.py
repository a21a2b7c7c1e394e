"""
Async engine and session factory.

The engine and factory are process-wide state owned by the application
context (see rental_booking.core.context); request handlers get a session
through the `get_db` dependency.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Optional

from fastapi import Request
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from rental_booking.core.config import Settings
from rental_booking.core.exceptions import TransientError
from rental_booking.core.logging import get_logger

logger = get_logger(__name__)


def build_engine(settings: Settings, url: Optional[str] = None) -> AsyncEngine:
    url = url or settings.DATABASE_URL
    options = {"echo": settings.DEBUG and settings.LOG_LEVEL.upper() == "DEBUG"}
    if url.startswith("postgresql"):
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_recycle=settings.DB_POOL_RECYCLE,
            pool_pre_ping=True,
        )
    return create_async_engine(url, **options)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session bound to the app context; roll back on error."""
    session_factory = request.app.state.ctx.session_factory
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def is_storage_outage(error: Exception) -> bool:
    """Driver/connection failures and pool exhaustion, but not constraint violations."""
    if isinstance(error, IntegrityError):
        return False
    return isinstance(error, (DBAPIError, PoolTimeoutError))


@asynccontextmanager
async def storage_errors(db: AsyncSession, operation: str) -> AsyncIterator[None]:
    """
    Roll back and raise TransientError when the database is unreachable.

    IntegrityError passes through untouched so callers can map it to a
    domain conflict.
    """
    try:
        yield
    except IntegrityError:
        raise
    except (DBAPIError, PoolTimeoutError) as e:
        await db.rollback()
        logger.error("storage_unavailable", operation=operation, error_type=type(e).__name__, error=str(e))
        raise TransientError("Storage is temporarily unavailable, try again", operation=operation) from e
