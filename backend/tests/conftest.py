"""
Pytest fixtures for the test database, application context and HTTP client.

Each test gets its own SQLite file (aiosqlite), an in-memory property and
identity directory, the process-local lock backend and a running event
dispatcher. The ASGI transport does not run the lifespan, so the client
fixture installs the test context on `app.state` directly.
"""

from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from rental_booking.core.config import Settings
from rental_booking.core.context import AppContext
from rental_booking.db.base import Base
from rental_booking.db.session import build_engine, build_session_factory
from rental_booking.domain.validation import PropertyConstraints
from rental_booking.main import app
from rental_booking.services.cache_service import AvailabilityCache
from rental_booking.services.directory_service import InMemoryIdentityDirectory, InMemoryPropertyDirectory
from rental_booking.services.event_dispatcher import EventDispatcher
from rental_booking.services.locks import LocalLockManager
from rental_booking.services.notification_service import register_notification_handlers
from rental_booking.services.reconciliation_service import register_webhook_retry

GUEST_ID = 101
OTHER_GUEST_ID = 102


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        ENVIRONMENT="test",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        REDIS_ENABLED=False,
        LOCK_BACKEND="local",
        LOCK_TIMEOUT_SECONDS=2.0,
        WEBHOOK_MAX_RETRIES=3,
        WEBHOOK_RETRY_DELAY_SECONDS=0.01,
        EVENT_WORKERS=1,
    )


@pytest.fixture
def scenario_property() -> PropertyConstraints:
    """2-14 nights, 100.00/night plus a 50.00 cleaning fee, host approval required."""
    return PropertyConstraints(
        property_id=1,
        max_guests=4,
        min_nights=2,
        max_nights=14,
        nightly_rate=Decimal("100.00"),
        cleaning_fee=Decimal("50.00"),
        instant_book=False,
    )


@pytest.fixture
def instant_property() -> PropertyConstraints:
    return PropertyConstraints(
        property_id=2,
        max_guests=2,
        min_nights=1,
        max_nights=30,
        nightly_rate=Decimal("120.00"),
        cleaning_fee=Decimal("30.00"),
        service_fee=Decimal("15.00"),
        security_deposit=Decimal("200.00"),
        instant_book=True,
    )


@pytest_asyncio.fixture
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    test_engine = build_engine(settings)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def ctx(
    settings: Settings,
    engine: AsyncEngine,
    scenario_property: PropertyConstraints,
    instant_property: PropertyConstraints,
) -> AsyncGenerator[AppContext, None]:
    dispatcher = EventDispatcher(workers=settings.EVENT_WORKERS, maxsize=100)
    context = AppContext(
        settings=settings,
        engine=engine,
        session_factory=build_session_factory(engine),
        locks=LocalLockManager(timeout=settings.LOCK_TIMEOUT_SECONDS),
        cache=AvailabilityCache(None),
        dispatcher=dispatcher,
        properties=InMemoryPropertyDirectory([scenario_property, instant_property]),
        identities=InMemoryIdentityDirectory([GUEST_ID, OTHER_GUEST_ID]),
    )
    register_notification_handlers(dispatcher)
    register_webhook_retry(context)
    await dispatcher.start()
    yield context
    await dispatcher.stop(drain_timeout=1.0)


@pytest_asyncio.fixture
async def db_session(ctx: AppContext) -> AsyncGenerator[AsyncSession, None]:
    async with ctx.session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(ctx: AppContext) -> AsyncGenerator[AsyncClient, None]:
    app.state.ctx = ctx
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
