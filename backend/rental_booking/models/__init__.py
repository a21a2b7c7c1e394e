from rental_booking.models.booking import Booking
from rental_booking.models.payment import Payment
from rental_booking.models.payment_refund import PaymentRefund
from rental_booking.models.availability import PropertyAvailability
from rental_booking.models.webhook_event import WebhookEvent

__all__ = ["Booking", "Payment", "PaymentRefund", "PropertyAvailability", "WebhookEvent"]
