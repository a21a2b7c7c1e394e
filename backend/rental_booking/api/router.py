"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from rental_booking.api.routes import bookings, payments, properties

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(bookings.router)
api_router.include_router(properties.router)
api_router.include_router(payments.router)
api_router.include_router(payments.webhook_router)
