"""
Reservation service: atomic reserve-or-reject for a property date range.

CONCURRENCY STRATEGY: Per-property Lock + Transactional Check-and-Insert
=======================================================================

Problem:
  Two guests request overlapping stays on the same property at the same
  time. Both read "no overlapping booking", both insert.
  Result: double booking.

Solution:
  1. Validate the request (pure, no I/O beyond collaborator lookups).
     Invalid requests never touch the lock.
  2. Take the property lock (`property:<id>`). Every other creation,
     cancellation or check-out on this property now waits behind us.
  3. In one transaction: select overlapping active bookings (FOR UPDATE on
     PostgreSQL), reject on any conflict or host block, insert the PENDING
     booking, rewrite the per-date availability rows, commit.
  4. Release the lock, invalidate the calendar cache, queue BookingCreated.

  The first committer wins; the loser sees the winner's row and gets a
  ConflictError. On PostgreSQL an exclusion constraint over
  (property_id, daterange(check_in, check_out)) for active rows is the final
  safety net; if it ever fires, the IntegrityError is reported as the same
  ConflictError.

  Different properties use different locks and never wait on each other.
"""

import time
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rental_booking.core.context import AppContext
from rental_booking.core.exceptions import (
    ConflictError,
    NotFoundError,
    ReservationError,
    TransientError,
    ValidationError,
)
from rental_booking.core.logging import bind_booking_context, get_logger
from rental_booking.core.metrics import record_reservation_attempt, reservation_latency
from rental_booking.db.session import storage_errors
from rental_booking.domain.events import BookingCreated
from rental_booking.domain.statuses import BookingStatus, PaymentStatus
from rental_booking.domain.validation import validate_stay
from rental_booking.models.booking import Booking
from rental_booking.services import availability_service
from rental_booking.services.interfaces.locking import property_lock_key

logger = get_logger(__name__)

_RESULT_BY_ERROR = (
    (ConflictError, "conflict"),
    (ValidationError, "invalid"),
    (NotFoundError, "invalid"),
    (TransientError, "transient"),
)


def _result_label(exc: ReservationError) -> str:
    for error_type, label in _RESULT_BY_ERROR:
        if isinstance(exc, error_type):
            return label
    return "error"


async def create_reservation(
    db: AsyncSession,
    ctx: AppContext,
    property_id: int,
    guest_id: int,
    check_in: date,
    check_out: date,
    guests: int,
    discount: Optional[Decimal] = None,
    today: Optional[date] = None,
) -> Booking:
    """
    Create a PENDING booking or raise.

    Raises:
        ValidationError: request violates stay or pricing rules
        NotFoundError: unknown property or guest
        ConflictError: dates overlap an active booking or a host block
        TransientError: lock wait timed out or a collaborator is down
    """
    bind_booking_context(property_id=property_id, guest_id=guest_id)
    started = time.perf_counter()
    try:
        async with storage_errors(db, "create_reservation"):
            booking = await _reserve(db, ctx, property_id, guest_id, check_in, check_out, guests, discount, today)
    except ReservationError as e:
        record_reservation_attempt(_result_label(e))
        logger.info(
            "reservation_rejected",
            code=e.code,
            reason=e.message,
            check_in=check_in.isoformat(),
            check_out=check_out.isoformat(),
        )
        raise
    finally:
        reservation_latency.observe(time.perf_counter() - started)

    record_reservation_attempt("created")
    await ctx.cache.invalidate_property(property_id)
    await ctx.dispatcher.publish(
        BookingCreated(
            booking_reference=booking.reference,
            property_id=booking.property_id,
            guest_id=booking.guest_id,
            check_in=booking.check_in,
            check_out=booking.check_out,
            total_price=booking.total_price,
        )
    )
    return booking


async def _reserve(
    db: AsyncSession,
    ctx: AppContext,
    property_id: int,
    guest_id: int,
    check_in: date,
    check_out: date,
    guests: int,
    discount: Optional[Decimal],
    today: Optional[date],
) -> Booking:
    if not await ctx.identities.exists(guest_id):
        raise NotFoundError("Guest", guest_id)

    constraints = await ctx.properties.get(property_id)
    stay = validate_stay(constraints, check_in, check_out, guests, today=today, discount=discount)

    async with ctx.locks.acquire(property_lock_key(property_id)):
        conflicts = await availability_service.find_conflicts(
            db, property_id, stay.check_in, stay.check_out, for_update=True
        )
        if conflicts:
            logger.warning(
                "reservation_conflict",
                conflicting=[b.reference for b in conflicts],
            )
            raise ConflictError(
                "Requested dates are not available",
                property_id=property_id,
            )

        blocked = await availability_service.find_blocked_dates(
            db, property_id, stay.check_in, stay.check_out
        )
        if blocked:
            raise ConflictError(
                "Requested dates are blocked by the host",
                property_id=property_id,
                dates=[d.isoformat() for d in blocked],
            )

        booking = Booking(
            property_id=property_id,
            guest_id=guest_id,
            check_in=stay.check_in,
            check_out=stay.check_out,
            guests=stay.guests,
            nights=stay.nights,
            currency=constraints.currency or ctx.settings.DEFAULT_CURRENCY,
            status=BookingStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            is_instant_book=constraints.instant_book,
            **stay.price.as_columns(),
        )
        db.add(booking)
        try:
            await db.flush()
            await availability_service.recompute_availability(
                db, property_id, stay.check_in, stay.check_out
            )
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.warning("reservation_integrity_conflict", error=str(e.orig))
            raise ConflictError("Requested dates are not available", property_id=property_id)

    bind_booking_context(booking_reference=booking.reference)
    logger.info(
        "reservation_created",
        booking_id=booking.id,
        check_in=booking.check_in.isoformat(),
        check_out=booking.check_out.isoformat(),
        nights=booking.nights,
        total_price=str(booking.total_price),
        instant_book=booking.is_instant_book,
    )
    return booking
