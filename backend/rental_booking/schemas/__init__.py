from rental_booking.schemas.booking import (
    BookingCreate, BookingCancel, BookingAction, BookingResponse, BookingListResponse, BookingStatistics,
)
from rental_booking.schemas.availability import (
    AvailabilityResponse, CalendarDay, CalendarResponse, BlockRequest, BlockResponse, OccupancyResponse,
)
from rental_booking.schemas.payment import PaymentCreate, PaymentResponse, WebhookPayload, WebhookAck

__all__ = [
    "BookingCreate", "BookingCancel", "BookingAction", "BookingResponse", "BookingListResponse",
    "BookingStatistics",
    "AvailabilityResponse", "CalendarDay", "CalendarResponse", "BlockRequest", "BlockResponse", "OccupancyResponse",
    "PaymentCreate", "PaymentResponse", "WebhookPayload", "WebhookAck",
]
