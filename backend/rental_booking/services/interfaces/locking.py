"""
Lock manager strategy interface.
Allows swapping between single-process and distributed mutual exclusion.
"""

from abc import ABC, abstractmethod
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Optional


def property_lock_key(property_id: int) -> str:
    return f"property:{property_id}"


def booking_lock_key(booking_id: int) -> str:
    return f"booking:{booking_id}"


class LockManager(ABC):
    """
    Interface for keyed mutual exclusion.

    Implementations:
    - LocalLockManager: per-key asyncio.Lock registry, one process only
    - RedisLockManager: redis lock with a lease, safe across workers

    Keys are namespaced strings (`property:<id>`, `booking:<id>`). Callers
    that need both take the property key first.
    """

    @abstractmethod
    def acquire(self, key: str, timeout: Optional[float] = None) -> AsyncContextManager[None]:
        """
        Hold `key` for the duration of the `async with` block.

        Args:
            key: Lock key
            timeout: Seconds to wait before giving up (None = manager default)

        Raises:
            TransientError: if the lock could not be obtained in time
        """

    @asynccontextmanager
    async def acquire_all(self, *keys: str, timeout: Optional[float] = None) -> AsyncIterator[None]:
        """Acquire several keys in the order given, release in reverse."""
        async with AsyncExitStack() as stack:
            for key in keys:
                await stack.enter_async_context(self.acquire(key, timeout=timeout))
            yield

    async def close(self) -> None:
        """Release backend resources on shutdown."""
