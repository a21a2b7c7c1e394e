"""
Redis read-through cache for property availability calendars.

CACHING STRATEGY
================

What we cache:
  - Calendar responses for a property and date window (JSON list of days)
  - Cache key pattern: "availability:{property_id}:{start}:{end}"

Why:
  - Calendar reads are the most frequent read in a rental marketplace
  - A calendar only changes when the property's active booking set or its
    host blocks change

Invalidation strategy:
  - On every active-set change (create, cancel, no-show, check-out,
    complete) and every block/unblock: delete all keys for that property
  - TTL-based expiry as safety net (AVAILABILITY_CACHE_TTL)

  All keys for a property share the prefix "availability:{property_id}:",
  so we can SCAN and delete them without touching other properties.

Why NOT cache the reservation-time availability check:
  - The conflict check must see committed state under the property lock;
    a stale "available" answer would let a double booking through. Only
    display reads go through this cache.

The cache is best-effort. Redis errors are logged and treated as a miss;
with no client configured every call is a no-op.
"""

import json
from datetime import date
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from rental_booking.core.logging import get_logger
from rental_booking.core.metrics import record_cache_operation

logger = get_logger(__name__)

KEY_PREFIX = "availability"


def make_calendar_key(property_id: int, start: date, end: date) -> str:
    return f"{KEY_PREFIX}:{property_id}:{start.isoformat()}:{end.isoformat()}"


class AvailabilityCache:
    def __init__(self, client: Optional[redis.Redis], ttl: int = 300):
        self.client = client
        self.ttl = ttl

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def get_calendar(self, property_id: int, start: date, end: date) -> Optional[list[dict]]:
        """Retrieve a cached calendar window."""
        if not self.client:
            return None

        key = make_calendar_key(property_id, start, end)
        try:
            data = await self.client.get(key)
        except RedisError as e:
            record_cache_operation("get", "error")
            logger.error("cache_get_error", key=key, error=str(e))
            return None

        if data:
            record_cache_operation("get", "hit")
            logger.debug("cache_hit", key=key)
            return json.loads(data)

        record_cache_operation("get", "miss")
        logger.debug("cache_miss", key=key)
        return None

    async def set_calendar(self, property_id: int, start: date, end: date, days: list[dict]) -> None:
        """Cache a calendar window with TTL."""
        if not self.client:
            return

        key = make_calendar_key(property_id, start, end)
        try:
            await self.client.setex(key, self.ttl, json.dumps(days, default=str))
            record_cache_operation("set", "ok")
            logger.debug("cache_set", key=key, ttl=self.ttl)
        except RedisError as e:
            record_cache_operation("set", "error")
            logger.error("cache_set_error", key=key, error=str(e))

    async def invalidate_property(self, property_id: int) -> int:
        """
        Drop every cached window for one property.
        Uses SCAN to find and delete all keys matching the property prefix.
        """
        if not self.client:
            return 0

        deleted = 0
        try:
            async for key in self.client.scan_iter(match=f"{KEY_PREFIX}:{property_id}:*", count=100):
                await self.client.delete(key)
                deleted += 1
            record_cache_operation("invalidate", "ok")
            logger.info("cache_invalidated", property_id=property_id, keys_deleted=deleted)
        except RedisError as e:
            record_cache_operation("invalidate", "error")
            logger.error("cache_invalidation_error", property_id=property_id, error=str(e))
        return deleted

    async def get_cache_stats(self) -> dict:
        """Get Redis cache statistics for monitoring."""
        if not self.client:
            return {"status": "disabled"}

        try:
            info = await self.client.info("stats")
            keyspace = await self.client.info("keyspace")
        except RedisError as e:
            return {"status": "error", "error": str(e)}

        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
            "keys": keyspace,
        }
