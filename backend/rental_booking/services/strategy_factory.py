"""
Lock strategy factory.
Configures which lock manager backs the reservation engine.
"""

from typing import Optional

import redis.asyncio as redis

from rental_booking.core.config import Settings
from rental_booking.core.logging import get_logger
from rental_booking.services.interfaces.locking import LockManager
from rental_booking.services.locks import LocalLockManager, RedisLockManager

logger = get_logger(__name__)


def get_lock_manager(settings: Settings, redis_client: Optional[redis.Redis] = None) -> LockManager:
    """
    Get configured lock manager.

    Strategy selection via LOCK_BACKEND:
    - local: LocalLockManager (single process, development and tests)
    - redis: RedisLockManager (several API workers sharing one database)

    A redis backend without a reachable redis is a startup error: silently
    degrading to process-local locks would allow double bookings across
    workers.
    """
    backend = settings.LOCK_BACKEND.lower()

    if backend == "redis":
        if redis_client is None:
            raise RuntimeError("LOCK_BACKEND=redis requires a reachable REDIS_URL")
        logger.info("lock_backend_selected", backend="redis", lease=settings.LOCK_LEASE_SECONDS)
        return RedisLockManager(
            redis_client,
            timeout=settings.LOCK_TIMEOUT_SECONDS,
            lease=settings.LOCK_LEASE_SECONDS,
        )

    if backend == "local":
        logger.info("lock_backend_selected", backend="local")
        return LocalLockManager(timeout=settings.LOCK_TIMEOUT_SECONDS)

    raise ValueError(f"Unknown LOCK_BACKEND: {settings.LOCK_BACKEND}")
