"""
In-process event dispatcher.

Lifecycle events are queued on an asyncio.Queue and handled by a small pool
of worker tasks, decoupled from the transaction that produced them. A
handler failure is logged and never reaches the publisher.
"""

import asyncio
from collections import defaultdict
from typing import Any, Awaitable, Callable

from rental_booking.core.logging import get_logger

logger = get_logger(__name__)

Handler = Callable[[Any], Awaitable[None]]


class EventDispatcher:
    def __init__(self, workers: int = 2, maxsize: int = 1000):
        self.workers = workers
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._handlers: dict[type, list[Handler]] = defaultdict(list)
        self._tasks: list[asyncio.Task] = []
        self._delayed: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    async def publish(self, event: Any) -> None:
        """Queue an event. Blocks only when the queue is full."""
        if not self._handlers.get(type(event)):
            logger.debug("event_without_subscribers", event_type=type(event).__name__)
            return
        await self.queue.put(event)

    def publish_later(self, event: Any, delay: float) -> None:
        """Queue an event after `delay` seconds without blocking the caller."""

        async def _delayed() -> None:
            await asyncio.sleep(delay)
            await self.publish(event)

        task = asyncio.create_task(_delayed())
        self._delayed.add(task)
        task.add_done_callback(self._delayed.discard)

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker(n), name=f"event-worker-{n}")
            for n in range(self.workers)
        ]
        logger.info("event_dispatcher_started", workers=self.workers)

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        await self.queue.join()

    async def stop(self, drain_timeout: float = 5.0) -> None:
        if self._tasks:
            try:
                await asyncio.wait_for(self.queue.join(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning("event_dispatcher_drain_timeout", pending=self.queue.qsize())

        for task in [*self._tasks, *self._delayed]:
            task.cancel()
        await asyncio.gather(*self._tasks, *self._delayed, return_exceptions=True)
        self._tasks = []
        self._delayed.clear()
        logger.info("event_dispatcher_stopped")

    async def _worker(self, worker_id: int) -> None:
        while True:
            event = await self.queue.get()
            try:
                await self._dispatch(event)
            finally:
                self.queue.task_done()

    async def _dispatch(self, event: Any) -> None:
        for handler in self._handlers.get(type(event), ()):
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    "event_handler_failed",
                    event_type=type(event).__name__,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                )
