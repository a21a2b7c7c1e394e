"""
Error taxonomy for the reservation engine.

Every error carries a stable machine-readable `code`, the HTTP status the
API renders it with, and whether the caller may retry. Callers distinguish
"dates unavailable" from "invalid request" from "try again" by code alone.
"""

from typing import Optional


class ReservationError(Exception):
    status_code = 500
    code = "internal_error"
    retryable = False

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.context = context

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "retryable": self.retryable}


class ValidationError(ReservationError):
    """Bad request shape or a violated stay/pricing constraint."""

    status_code = 400
    code = "invalid_request"

    def __init__(self, message: str, field: Optional[str] = None, **context):
        super().__init__(message, field=field, **context)
        self.field = field


class ConflictError(ReservationError):
    """Lost the race for a date range, or the range is already held."""

    status_code = 409
    code = "dates_unavailable"
    retryable = True


class StateError(ReservationError):
    """Illegal lifecycle transition."""

    status_code = 409
    code = "invalid_transition"

    def __init__(self, current: str, target: str, message: str = ""):
        super().__init__(message or f"Cannot transition booking from {current} to {target}")
        self.current = current
        self.target = target


class PaymentNotFoundError(ReservationError):
    """A provider event references no known payment. Logged, never surfaced to the provider."""

    status_code = 404
    code = "payment_not_found"


class TransientError(ReservationError):
    """Lock timeout or storage hiccup; safe to retry with backoff."""

    status_code = 503
    code = "try_again"
    retryable = True


class NotFoundError(ReservationError):
    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, identifier):
        super().__init__(f"{entity} {identifier} not found")
        self.entity = entity
        self.identifier = identifier


class MalformedWebhookError(ReservationError):
    status_code = 400
    code = "malformed_webhook"
