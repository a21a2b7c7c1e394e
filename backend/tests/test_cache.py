"""
Availability cache tests against an in-memory stand-in for the redis client.
"""

import fnmatch
from datetime import date, timedelta

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from rental_booking.services import availability_service
from rental_booking.services.cache_service import AvailabilityCache, make_calendar_key


class FakeRedis:
    """The subset of redis.asyncio.Redis the cache uses."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    async def delete(self, key):
        self.store.pop(key, None)

    async def scan_iter(self, match=None, count=None):
        for key in list(self.store):
            if match is None or fnmatch.fnmatch(key, match):
                yield key

    async def info(self, section=None):
        if section == "stats":
            return {"keyspace_hits": 3, "keyspace_misses": 1}
        return {"db0": {"keys": len(self.store)}}


class BrokenRedis(FakeRedis):
    async def get(self, key):
        raise RedisConnectionError("connection reset")

    async def setex(self, key, ttl, value):
        raise RedisConnectionError("connection reset")


JUNE_1 = date(2025, 6, 1)
JUNE_8 = date(2025, 6, 8)
DAYS = [{"date": "2025-06-01", "status": "BOOKED", "booking_id": 4, "notes": None}]


def test_key_layout():
    assert make_calendar_key(7, JUNE_1, JUNE_8) == "availability:7:2025-06-01:2025-06-08"


@pytest.mark.asyncio
async def test_set_then_get():
    client = FakeRedis()
    cache = AvailabilityCache(client, ttl=120)

    assert await cache.get_calendar(1, JUNE_1, JUNE_8) is None
    await cache.set_calendar(1, JUNE_1, JUNE_8, DAYS)

    assert await cache.get_calendar(1, JUNE_1, JUNE_8) == DAYS
    assert client.ttls[make_calendar_key(1, JUNE_1, JUNE_8)] == 120


@pytest.mark.asyncio
async def test_invalidation_is_per_property():
    client = FakeRedis()
    cache = AvailabilityCache(client)
    await cache.set_calendar(1, JUNE_1, JUNE_8, DAYS)
    await cache.set_calendar(1, JUNE_8, JUNE_8 + timedelta(days=7), DAYS)
    await cache.set_calendar(12, JUNE_1, JUNE_8, DAYS)

    deleted = await cache.invalidate_property(1)

    assert deleted == 2
    assert list(client.store) == [make_calendar_key(12, JUNE_1, JUNE_8)]


@pytest.mark.asyncio
async def test_disabled_cache_is_a_no_op():
    cache = AvailabilityCache(None)

    await cache.set_calendar(1, JUNE_1, JUNE_8, DAYS)

    assert not cache.enabled
    assert await cache.get_calendar(1, JUNE_1, JUNE_8) is None
    assert await cache.invalidate_property(1) == 0
    assert await cache.get_cache_stats() == {"status": "disabled"}


@pytest.mark.asyncio
async def test_redis_errors_are_misses():
    cache = AvailabilityCache(BrokenRedis())

    await cache.set_calendar(1, JUNE_1, JUNE_8, DAYS)
    assert await cache.get_calendar(1, JUNE_1, JUNE_8) is None


@pytest.mark.asyncio
async def test_cache_stats():
    stats = await AvailabilityCache(FakeRedis()).get_cache_stats()

    assert stats["status"] == "connected"
    assert stats["hit_rate"] == 75.0


@pytest.mark.asyncio
async def test_calendar_is_read_through_and_invalidated_on_booking(ctx, client):
    ctx.cache = AvailabilityCache(FakeRedis())
    start = date.today() + timedelta(days=30)
    end = start + timedelta(days=5)

    async with ctx.session_factory() as db:
        first = await availability_service.get_calendar(db, ctx, 1, start, end)
    assert {d["status"] for d in first} == {"AVAILABLE"}
    assert await ctx.cache.get_calendar(1, start, end) == first

    response = await client.post(
        "/api/v1/bookings",
        json={
            "property_id": 1,
            "guest_id": 101,
            "check_in": start.isoformat(),
            "check_out": (start + timedelta(days=2)).isoformat(),
            "guests": 1,
        },
    )
    assert response.status_code == 201
    assert await ctx.cache.get_calendar(1, start, end) is None

    async with ctx.session_factory() as db:
        refreshed = await availability_service.get_calendar(db, ctx, 1, start, end)
    assert [d["status"] for d in refreshed[:3]] == ["BOOKED", "BOOKED", "AVAILABLE"]
