"""
Renders reservation errors as JSON:

    {"error": {"code": "dates_unavailable", "message": "...", "retryable": true}}

Database outages that escape a service (reads, mostly) are rendered as
TransientError.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from rental_booking.core.exceptions import ReservationError, TransientError
from rental_booking.core.logging import get_logger
from rental_booking.db.session import is_storage_outage

logger = get_logger(__name__)


async def reservation_error_handler(request: Request, exc: ReservationError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("request_error", code=exc.code, error=exc.message)
    headers = {"Retry-After": "1"} if exc.status_code == 503 else None
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()}, headers=headers)


async def storage_error_handler(request: Request, exc: Exception) -> JSONResponse:
    if not is_storage_outage(exc):
        logger.error("database_error", path=request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"error": ReservationError("Internal error").to_dict()})
    logger.error("storage_unavailable", path=request.url.path, error_type=type(exc).__name__)
    return await reservation_error_handler(
        request, TransientError("Storage is temporarily unavailable, try again")
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ReservationError, reservation_error_handler)
    app.add_exception_handler(DBAPIError, storage_error_handler)
    app.add_exception_handler(PoolTimeoutError, storage_error_handler)
