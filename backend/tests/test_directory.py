"""
Property and identity directory tests against a mocked HTTP transport.
"""

from decimal import Decimal

import httpx
import pytest

from rental_booking.core.config import Settings
from rental_booking.core.exceptions import NotFoundError, TransientError
from rental_booking.services.directory_service import (
    HttpIdentityDirectory,
    HttpPropertyDirectory,
    InMemoryIdentityDirectory,
    InMemoryPropertyDirectory,
    build_directories,
)

BASE_URL = "http://property-service"

PROPERTY_JSON = {
    "id": 42,
    "max_guests": 6,
    "min_nights": 3,
    "max_nights": 28,
    "nightly_rate": "180.00",
    "cleaning_fee": "75.00",
    "instant_book": True,
}


def client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_property_lookup():
    def handler(request):
        assert request.url.path == "/properties/42/constraints"
        return httpx.Response(200, json=PROPERTY_JSON)

    directory = HttpPropertyDirectory(BASE_URL, client=client_for(handler))
    constraints = await directory.get(42)
    await directory.close()

    assert constraints.property_id == 42
    assert constraints.min_nights == 3
    assert constraints.nightly_rate == Decimal("180.00")
    assert constraints.service_fee is None
    assert constraints.instant_book is True


@pytest.mark.asyncio
async def test_unknown_property():
    directory = HttpPropertyDirectory(BASE_URL, client=client_for(lambda r: httpx.Response(404)))

    with pytest.raises(NotFoundError):
        await directory.get(42)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500),
        httpx.Response(200, json={"id": 42}),
        httpx.Response(200, content=b"not json"),
    ],
)
async def test_property_service_failures_are_transient(response):
    directory = HttpPropertyDirectory(BASE_URL, client=client_for(lambda r: response))

    with pytest.raises(TransientError):
        await directory.get(42)


@pytest.mark.asyncio
async def test_property_service_unreachable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    directory = HttpPropertyDirectory(BASE_URL, client=client_for(handler))

    with pytest.raises(TransientError):
        await directory.get(42)


@pytest.mark.asyncio
async def test_identity_lookup():
    def handler(request):
        if request.url.path == "/users/7":
            return httpx.Response(200, json={"id": 7})
        if request.url.path == "/users/8":
            return httpx.Response(404)
        return httpx.Response(502)

    directory = HttpIdentityDirectory(BASE_URL, client=client_for(handler))

    assert await directory.exists(7) is True
    assert await directory.exists(8) is False
    with pytest.raises(TransientError):
        await directory.exists(9)


@pytest.mark.asyncio
async def test_in_memory_directories(scenario_property):
    properties = InMemoryPropertyDirectory([scenario_property])
    identities = InMemoryIdentityDirectory([101])

    assert (await properties.get(1)).max_guests == 4
    with pytest.raises(NotFoundError):
        await properties.get(2)
    assert await identities.exists(101)
    assert not await identities.exists(102)
    assert await InMemoryIdentityDirectory(allow_all=True).exists(102)


def test_build_directories_from_settings():
    properties, identities = build_directories(Settings())
    assert isinstance(properties, InMemoryPropertyDirectory)
    assert isinstance(identities, InMemoryIdentityDirectory)

    properties, identities = build_directories(
        Settings(PROPERTY_SERVICE_URL=BASE_URL, IDENTITY_SERVICE_URL="http://identity-service")
    )
    assert isinstance(properties, HttpPropertyDirectory)
    assert isinstance(identities, HttpIdentityDirectory)
