"""
Process-wide application state.

Everything that outlives a single request (database engine, lock manager,
availability cache, event dispatcher, collaborator clients) is built once in
the FastAPI lifespan, stored on `app.state.ctx`, and closed on shutdown.
"""

from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from rental_booking.core.config import Settings
from rental_booking.core.logging import get_logger
from rental_booking.db.session import build_engine, build_session_factory
from rental_booking.infrastructure.redis_client import close_redis, connect_redis
from rental_booking.services.cache_service import AvailabilityCache
from rental_booking.services.directory_service import build_directories
from rental_booking.services.event_dispatcher import EventDispatcher
from rental_booking.services.interfaces.directory import IdentityDirectory, PropertyDirectory
from rental_booking.services.interfaces.locking import LockManager
from rental_booking.services.strategy_factory import get_lock_manager

logger = get_logger(__name__)


@dataclass
class AppContext:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    locks: LockManager
    cache: AvailabilityCache
    dispatcher: EventDispatcher
    properties: PropertyDirectory
    identities: IdentityDirectory
    redis_client: Optional[redis.Redis] = None


async def build_context(settings: Settings) -> AppContext:
    engine = build_engine(settings)
    redis_client = await connect_redis(settings)
    if redis_client is None:
        logger.warning("redis_unavailable", message="Running without availability cache")

    properties, identities = build_directories(settings)

    return AppContext(
        settings=settings,
        engine=engine,
        session_factory=build_session_factory(engine),
        locks=get_lock_manager(settings, redis_client),
        cache=AvailabilityCache(redis_client, ttl=settings.AVAILABILITY_CACHE_TTL),
        dispatcher=EventDispatcher(
            workers=settings.EVENT_WORKERS, maxsize=settings.EVENT_QUEUE_SIZE
        ),
        properties=properties,
        identities=identities,
        redis_client=redis_client,
    )


async def close_context(ctx: AppContext) -> None:
    await ctx.dispatcher.stop()
    await ctx.locks.close()
    await ctx.properties.close()
    await ctx.identities.close()
    await close_redis(ctx.redis_client)
    await ctx.engine.dispose()


def get_context(request: Request) -> AppContext:
    return request.app.state.ctx
