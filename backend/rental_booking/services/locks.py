"""
Lock managers guarding the reservation engine's shared state.

LOCKING STRATEGY
================

Problem:
  Two guests request overlapping stays on the same property at the same
  time. Both run the overlap query, both see no conflict, both insert.
  Result: double booking.

Solution:
  Every reservation and every transition that can free dates runs under a
  per-property lock (`property:<id>`). Mutations of a single booking or its
  payment additionally hold `booking:<id>`. Lock order is always property
  then booking, so two code paths can never deadlock each other.

  Waits are bounded. A caller that cannot get the lock within the timeout
  gets a TransientError ("try_again") and decides for itself whether to
  retry; nothing here retries silently.

Backends:
  - LocalLockManager: asyncio locks, correct for a single worker process
  - RedisLockManager: redis SET NX locks with a lease, for multiple workers
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as redis
from redis.exceptions import LockError, RedisError

from rental_booking.core.exceptions import TransientError
from rental_booking.core.logging import get_logger
from rental_booking.core.metrics import record_lock_timeout, record_lock_wait
from rental_booking.services.interfaces.locking import LockManager

logger = get_logger(__name__)


def _release_if_acquired(lock: asyncio.Lock, task: asyncio.Future) -> None:
    if not task.cancelled() and task.exception() is None:
        lock.release()


async def acquire_within(lock: asyncio.Lock, timeout: float) -> bool:
    """
    Acquire `lock` or give up after `timeout` seconds.

    An acquire that completes after we stopped waiting (timeout or
    cancellation) is released again, so a caller that gave up never
    leaves the lock held.
    """
    acquiring = asyncio.ensure_future(lock.acquire())
    try:
        await asyncio.wait({acquiring}, timeout=timeout)
    except asyncio.CancelledError:
        acquiring.cancel()
        acquiring.add_done_callback(lambda t: _release_if_acquired(lock, t))
        raise
    if acquiring.done():
        return acquiring.result()
    acquiring.cancel()
    acquiring.add_done_callback(lambda t: _release_if_acquired(lock, t))
    return False


class LocalLockManager(LockManager):
    """
    Per-key asyncio.Lock registry.

    Locks are created on first use and dropped once no task holds or waits
    on them, so the registry stays proportional to in-flight requests.
    Different keys never contend.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def acquire(self, key: str, timeout: Optional[float] = None) -> AsyncIterator[None]:
        wait = self.timeout if timeout is None else timeout
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._refs[key] = self._refs.get(key, 0) + 1
        started = time.perf_counter()
        try:
            if not await acquire_within(lock, wait):
                record_lock_timeout(key)
                logger.warning("lock_timeout", key=key, timeout=wait)
                raise TransientError(f"Timed out waiting for {key}", key=key)

            record_lock_wait(key, time.perf_counter() - started)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]
                self._locks.pop(key, None)


class RedisLockManager(LockManager):
    """
    Distributed lock on redis.

    The lease bounds how long a crashed holder can keep a key; it must be
    longer than the slowest reservation transaction.
    """

    def __init__(self, client: redis.Redis, timeout: float = 5.0, lease: float = 30.0):
        self.client = client
        self.timeout = timeout
        self.lease = lease

    @asynccontextmanager
    async def acquire(self, key: str, timeout: Optional[float] = None) -> AsyncIterator[None]:
        wait = self.timeout if timeout is None else timeout
        lock = self.client.lock(f"lock:{key}", timeout=self.lease, blocking_timeout=wait)
        started = time.perf_counter()
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            logger.error("lock_backend_error", key=key, error=str(e))
            raise TransientError(f"Lock backend unavailable for {key}", key=key)

        if not acquired:
            record_lock_timeout(key)
            logger.warning("lock_timeout", key=key, timeout=wait)
            raise TransientError(f"Timed out waiting for {key}", key=key)

        record_lock_wait(key, time.perf_counter() - started)
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # Lease expired while held; another worker may own it now.
                logger.warning("lock_release_failed", key=key, error=str(e))
