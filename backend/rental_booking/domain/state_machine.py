"""
Booking and payment lifecycle rules.

Transition tables and the predicates derived from them. Everything here is
pure; persisting a transition (with locking and version checks) is the job
of rental_booking.services.booking_service.

Booking lifecycle:

    PENDING -> CONFIRMED -> CHECKED_IN -> CHECKED_OUT -> COMPLETED
       |           |  \\          |
       v           v   \\         v
    CANCELLED  CANCELLED NO_SHOW  NO_SHOW

REFUNDED is not a booking state. Refunds are recorded on the payment axis.
"""

from typing import Union

from rental_booking.core.exceptions import StateError
from rental_booking.domain.statuses import BookingStatus, PaymentStatus

BOOKING_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.CHECKED_IN, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
    ),
    BookingStatus.CHECKED_IN: frozenset({BookingStatus.CHECKED_OUT, BookingStatus.NO_SHOW}),
    BookingStatus.CHECKED_OUT: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}

ACTIVE_STATUSES = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN}
)

# Statuses whose nights count as occupied for occupancy reporting.
OCCUPYING_STATUSES = ACTIVE_STATUSES | {BookingStatus.CHECKED_OUT, BookingStatus.COMPLETED}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.PROCESSING, PaymentStatus.COMPLETED, PaymentStatus.FAILED,
        PaymentStatus.CANCELLED, PaymentStatus.REFUNDED,
    }),
    PaymentStatus.PROCESSING: frozenset({
        PaymentStatus.COMPLETED, PaymentStatus.FAILED,
        PaymentStatus.CANCELLED, PaymentStatus.REFUNDED,
    }),
    PaymentStatus.COMPLETED: frozenset({
        PaymentStatus.REFUNDED, PaymentStatus.FAILED, PaymentStatus.DISPUTED,
    }),
    PaymentStatus.FAILED: frozenset({
        PaymentStatus.PENDING, PaymentStatus.PROCESSING,
        PaymentStatus.COMPLETED, PaymentStatus.REFUNDED,
    }),
    PaymentStatus.CANCELLED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.DISPUTED: frozenset({
        PaymentStatus.COMPLETED, PaymentStatus.CHARGEBACK, PaymentStatus.REFUNDED,
    }),
    PaymentStatus.REFUNDED: frozenset(),
    PaymentStatus.PARTIALLY_REFUNDED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.CHARGEBACK: frozenset(),
}

StatusLike = Union[BookingStatus, str]


def _booking_status(value: StatusLike) -> BookingStatus:
    return value if isinstance(value, BookingStatus) else BookingStatus(value)


def _payment_status(value) -> PaymentStatus:
    return value if isinstance(value, PaymentStatus) else PaymentStatus(value)


def is_active(status: StatusLike) -> bool:
    """Active bookings are the only ones that block availability."""
    return _booking_status(status) in ACTIVE_STATUSES


def is_terminal(status: StatusLike) -> bool:
    return not BOOKING_TRANSITIONS[_booking_status(status)]


def can_transition(current: StatusLike, target: StatusLike) -> bool:
    return _booking_status(target) in BOOKING_TRANSITIONS[_booking_status(current)]


def can_be_cancelled(status: StatusLike) -> bool:
    return can_transition(status, BookingStatus.CANCELLED)


def is_refundable(status: StatusLike) -> bool:
    return _booking_status(status) in (BookingStatus.CANCELLED, BookingStatus.NO_SHOW)


def may_leave_active_set(target: StatusLike) -> bool:
    """Moving into `target` can free dates, so it needs the property lock."""
    return not is_active(target)


def assert_transition(current: StatusLike, target: StatusLike) -> BookingStatus:
    current, target = _booking_status(current), _booking_status(target)
    if target not in BOOKING_TRANSITIONS[current]:
        raise StateError(current.value, target.value)
    return target


def can_transition_payment(current, target) -> bool:
    current, target = _payment_status(current), _payment_status(target)
    return target in PAYMENT_TRANSITIONS[current]


def is_payment_retry(current, target) -> bool:
    """Leaving FAILED for anything but a refund is a new attempt."""
    return (
        _payment_status(current) == PaymentStatus.FAILED
        and _payment_status(target) != PaymentStatus.REFUNDED
    )
