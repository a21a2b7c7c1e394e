"""
Rental Booking Engine - Main Application Entry Point

Reservation core of a vacation-rental marketplace:
- Conflict-free reservations under per-property locks
- Booking lifecycle state machine with optimistic version checks
- Idempotent, order-tolerant payment webhook reconciliation
- Redis-cached availability calendars with per-property invalidation
- Structured logging with request correlation and Prometheus metrics
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from rental_booking.api.errors import register_exception_handlers
from rental_booking.api.middleware import RequestLoggingMiddleware
from rental_booking.api.router import api_router
from rental_booking.core.config import get_settings
from rental_booking.core.context import build_context, close_context
from rental_booking.core.logging import get_logger, setup_logging
from rental_booking.core.metrics import metrics_endpoint
from rental_booking.services.notification_service import register_notification_handlers
from rental_booking.services.reconciliation_service import register_webhook_retry

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: build process-wide state, then tear it down."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        lock_backend=settings.LOCK_BACKEND,
    )

    ctx = await build_context(settings)
    register_notification_handlers(ctx.dispatcher)
    register_webhook_retry(ctx)
    await ctx.dispatcher.start()
    app.state.ctx = ctx

    yield

    await close_context(ctx)
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Reservation engine with conflict-free bookings and payment reconciliation",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
register_exception_handlers(app)
app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint for Docker and load balancers."""
    ctx = request.app.state.ctx
    database = "ok"
    try:
        async with ctx.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        database = f"error: {e.__class__.__name__}"

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "database": database,
        "cache": await ctx.cache.get_cache_stats(),
        "lock_backend": settings.LOCK_BACKEND,
        "event_queue_depth": ctx.dispatcher.queue.qsize(),
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
async def metrics():
    return metrics_endpoint()
