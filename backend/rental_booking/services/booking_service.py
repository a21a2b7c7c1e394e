"""
Booking lifecycle service: locked, versioned persistence of state transitions.

CONCURRENCY STRATEGY: Locks + Optimistic Version Check with Retry
=================================================================

Problem:
  A guest cancels while a payment webhook confirms the same booking.
  Both read status=PENDING, both write. Last writer wins and one action
  is silently lost.

Solution:
  1. Take the booking lock (`booking:<id>`). Transitions that can remove
     the booking from the active set (cancel, no-show, check-out, complete)
     take the property lock first, since they free dates.
  2. Re-read the booking and check the transition table.
  3. UPDATE bookings SET status = :target, version = version + 1
     WHERE id = :id AND version = :current_version AND status = :current
  4. If rows_affected == 0, someone outside our lock (another worker on a
     process-local lock backend, a manual SQL fix) changed the row:
     refresh and retry up to MAX_RETRY_ATTEMPTS.

  The version check is the safety net for the case the lock cannot cover;
  with a shared lock backend it should never fire.
"""

import csv
import io
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rental_booking.core.context import AppContext
from rental_booking.core.exceptions import NotFoundError, StateError, TransientError
from rental_booking.core.logging import bind_booking_context, get_logger
from rental_booking.core.metrics import record_transition, version_conflicts
from rental_booking.db.base import utcnow
from rental_booking.db.session import storage_errors
from rental_booking.domain.events import BookingStatusChanged
from rental_booking.domain.state_machine import OCCUPYING_STATUSES, assert_transition, is_active, may_leave_active_set
from rental_booking.domain.statuses import BookingStatus
from rental_booking.models.booking import Booking
from rental_booking.services import availability_service
from rental_booking.services.interfaces.locking import booking_lock_key, property_lock_key

logger = get_logger(__name__)

MAX_RETRY_ATTEMPTS = 3

EXPORT_COLUMNS = (
    "reference",
    "property_id",
    "guest_id",
    "check_in",
    "check_out",
    "nights",
    "guests",
    "total_price",
    "currency",
    "status",
    "payment_status",
    "created_at",
)


async def apply_transition(
    db: AsyncSession,
    booking: Booking,
    target: BookingStatus,
    actor: Optional[str] = None,
    reason: Optional[str] = None,
    max_attempts: int = MAX_RETRY_ATTEMPTS,
) -> BookingStatus:
    """
    Move `booking` to `target` with an optimistic version check.
    Caller holds the booking lock and commits. Returns the previous status.

    Raises:
        StateError: target not reachable from the current status
        TransientError: version conflicts exhausted the retry budget
    """
    target = BookingStatus(target)

    for attempt in range(1, max_attempts + 1):
        current = BookingStatus(booking.status)
        try:
            assert_transition(current, target)
        except StateError:
            record_transition(target.value, applied=False)
            logger.info(
                "booking_transition_rejected",
                booking_reference=booking.reference,
                current=current.value,
                target=target.value,
            )
            raise

        now = utcnow()
        values = {"status": target.value, "version": Booking.version + 1, "updated_at": now}
        if target == BookingStatus.CANCELLED:
            values.update(cancellation_reason=reason, cancelled_by=actor, cancelled_at=now)

        result = await db.execute(
            update(Booking)
            .where(
                Booking.id == booking.id,
                Booking.version == booking.version,
                Booking.status == current.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await db.refresh(booking)

        if result.rowcount == 1:
            record_transition(target.value, applied=True)
            logger.info(
                "booking_transitioned",
                booking_reference=booking.reference,
                previous=current.value,
                status=target.value,
                actor=actor,
                attempt=attempt,
            )
            return current

        version_conflicts.inc()
        logger.info(
            "booking_transition_retry",
            booking_reference=booking.reference,
            attempt=attempt,
            reason="version_conflict",
        )

    raise TransientError(
        "Booking was modified concurrently. Please try again.",
        booking_reference=booking.reference,
    )


async def transition_booking(
    db: AsyncSession,
    ctx: AppContext,
    reference: str,
    target: BookingStatus,
    actor: Optional[str] = None,
    reason: Optional[str] = None,
) -> Booking:
    """Locked transition by booking reference. Frees dates when leaving the active set."""
    booking = await get_booking(db, reference)
    target = BookingStatus(target)
    bind_booking_context(booking_reference=reference, property_id=booking.property_id)

    keys = []
    if may_leave_active_set(target):
        keys.append(property_lock_key(booking.property_id))
    keys.append(booking_lock_key(booking.id))

    async with ctx.locks.acquire_all(*keys), storage_errors(db, "transition_booking"):
        await db.refresh(booking)
        previous = await apply_transition(
            db, booking, target, actor=actor, reason=reason,
            max_attempts=ctx.settings.MAX_RETRY_ATTEMPTS,
        )
        freed = is_active(previous) and not is_active(target)
        if freed:
            await availability_service.recompute_availability(
                db, booking.property_id, booking.check_in, booking.check_out
            )
        await db.commit()

    if freed:
        await ctx.cache.invalidate_property(booking.property_id)
    await ctx.dispatcher.publish(
        BookingStatusChanged(
            booking_reference=booking.reference,
            property_id=booking.property_id,
            previous_status=previous.value,
            status=target.value,
            actor=actor,
            reason=reason,
        )
    )
    return booking


async def confirm(db: AsyncSession, ctx: AppContext, reference: str, actor: Optional[str] = None) -> Booking:
    return await transition_booking(db, ctx, reference, BookingStatus.CONFIRMED, actor=actor)


async def check_in(db: AsyncSession, ctx: AppContext, reference: str, actor: Optional[str] = None) -> Booking:
    return await transition_booking(db, ctx, reference, BookingStatus.CHECKED_IN, actor=actor)


async def check_out(db: AsyncSession, ctx: AppContext, reference: str, actor: Optional[str] = None) -> Booking:
    return await transition_booking(db, ctx, reference, BookingStatus.CHECKED_OUT, actor=actor)


async def complete(db: AsyncSession, ctx: AppContext, reference: str, actor: Optional[str] = None) -> Booking:
    return await transition_booking(db, ctx, reference, BookingStatus.COMPLETED, actor=actor)


async def mark_no_show(db: AsyncSession, ctx: AppContext, reference: str, actor: Optional[str] = None) -> Booking:
    return await transition_booking(db, ctx, reference, BookingStatus.NO_SHOW, actor=actor)


async def cancel(
    db: AsyncSession,
    ctx: AppContext,
    reference: str,
    reason: Optional[str] = None,
    actor: Optional[str] = None,
) -> Booking:
    """Cancel and record who cancelled and why."""
    return await transition_booking(db, ctx, reference, BookingStatus.CANCELLED, actor=actor, reason=reason)


async def get_booking(db: AsyncSession, reference: str) -> Booking:
    result = await db.execute(select(Booking).where(Booking.reference == reference))
    booking = result.scalar_one_or_none()
    if booking is None:
        raise NotFoundError("Booking", reference)
    return booking


def _filtered(stmt, guest_id: Optional[int], property_id: Optional[int], status: Optional[BookingStatus]):
    if guest_id is not None:
        stmt = stmt.where(Booking.guest_id == guest_id)
    if property_id is not None:
        stmt = stmt.where(Booking.property_id == property_id)
    if status is not None:
        stmt = stmt.where(Booking.status == BookingStatus(status).value)
    return stmt


async def list_bookings(
    db: AsyncSession,
    guest_id: Optional[int] = None,
    property_id: Optional[int] = None,
    status: Optional[BookingStatus] = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Booking], int]:
    """Paginated bookings, newest first. Returns (items, total)."""
    count_stmt = _filtered(select(func.count(Booking.id)), guest_id, property_id, status)
    total = (await db.execute(count_stmt)).scalar_one()

    stmt = _filtered(select(Booking), guest_id, property_id, status)
    result = await db.execute(
        stmt.order_by(Booking.created_at.desc(), Booking.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total


async def export_bookings_csv(
    db: AsyncSession,
    guest_id: Optional[int] = None,
    property_id: Optional[int] = None,
    status: Optional[BookingStatus] = None,
) -> str:
    stmt = _filtered(select(Booking), guest_id, property_id, status)
    result = await db.execute(stmt.order_by(Booking.created_at.desc(), Booking.id.desc()))

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_COLUMNS)
    rows = 0
    for booking in result.scalars():
        writer.writerow([_export_value(getattr(booking, column)) for column in EXPORT_COLUMNS])
        rows += 1

    logger.info("bookings_exported", rows=rows)
    return buffer.getvalue()


def _export_value(value):
    if isinstance(value, date):
        return value.isoformat()
    if value is None:
        return ""
    return str(value)


async def booking_statistics(db: AsyncSession, property_id: Optional[int] = None) -> dict:
    """Counts by status plus revenue over bookings that were not cancelled or no-shows."""
    by_status_stmt = select(Booking.status, func.count(Booking.id)).group_by(Booking.status)
    if property_id is not None:
        by_status_stmt = by_status_stmt.where(Booking.property_id == property_id)
    by_status = {status.value: 0 for status in BookingStatus}
    for status, count in (await db.execute(by_status_stmt)).all():
        by_status[status] = count

    revenue_stmt = select(
        func.count(Booking.id),
        func.coalesce(func.sum(Booking.total_price), 0),
        func.count(func.distinct(Booking.guest_id)),
        func.count(func.distinct(Booking.property_id)),
    ).where(Booking.status.in_([s.value for s in OCCUPYING_STATUSES]))
    if property_id is not None:
        revenue_stmt = revenue_stmt.where(Booking.property_id == property_id)
    billable, revenue, unique_guests, unique_properties = (await db.execute(revenue_stmt)).one()

    revenue = Decimal(str(revenue)).quantize(Decimal("0.01"))
    average = (revenue / billable).quantize(Decimal("0.01")) if billable else Decimal("0.00")

    return {
        "total_bookings": sum(by_status.values()),
        "by_status": by_status,
        "total_revenue": revenue,
        "average_booking_value": average,
        "unique_guests": unique_guests,
        "unique_properties": unique_properties,
    }
