"""
Lifecycle event consumers: host/guest notifications and the audit trail.

Message delivery belongs to a separate notification service; these handlers
record what would be sent so the hand-off is observable in the logs.
"""

from rental_booking.core.logging import get_logger
from rental_booking.domain.events import BookingCreated, BookingStatusChanged
from rental_booking.services.event_dispatcher import EventDispatcher

logger = get_logger(__name__)
audit_logger = get_logger("rental_booking.audit")


async def notify_host_of_booking(event: BookingCreated) -> None:
    logger.info(
        "host_notification_queued",
        booking_reference=event.booking_reference,
        property_id=event.property_id,
        check_in=event.check_in.isoformat(),
        check_out=event.check_out.isoformat(),
    )


async def notify_guest_of_booking(event: BookingCreated) -> None:
    logger.info(
        "guest_notification_queued",
        booking_reference=event.booking_reference,
        guest_id=event.guest_id,
        total_price=str(event.total_price),
    )


async def audit_booking_created(event: BookingCreated) -> None:
    audit_logger.info("audit_booking_created", **event.to_dict())


async def audit_status_changed(event: BookingStatusChanged) -> None:
    audit_logger.info(
        "audit_booking_status_changed",
        booking_reference=event.booking_reference,
        property_id=event.property_id,
        previous_status=event.previous_status,
        status=event.status,
        actor=event.actor,
        reason=event.reason,
    )


def register_notification_handlers(dispatcher: EventDispatcher) -> None:
    dispatcher.subscribe(BookingCreated, notify_host_of_booking)
    dispatcher.subscribe(BookingCreated, notify_guest_of_booking)
    dispatcher.subscribe(BookingCreated, audit_booking_created)
    dispatcher.subscribe(BookingStatusChanged, audit_status_changed)
