"""
Availability index: per-property, per-date view of what can be booked.

Two sources make a date unavailable:
  - an active booking (PENDING / CONFIRMED / CHECKED_IN) whose half-open
    range covers it
  - a host block (BLOCKED / MAINTENANCE / UNAVAILABLE) row

The `bookings` table is authoritative for the first; `property_availability`
rows are rewritten from it by `recompute_availability` whenever the active
set changes, and hold the host blocks directly.

Reservation-time checks always read the database under the property lock.
Calendar display reads go through the AvailabilityCache.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from rental_booking.core.context import AppContext
from rental_booking.core.exceptions import ConflictError, ValidationError
from rental_booking.core.logging import get_logger
from rental_booking.db.session import storage_errors
from rental_booking.domain.calendar import iter_nights, occupancy
from rental_booking.domain.state_machine import ACTIVE_STATUSES, OCCUPYING_STATUSES
from rental_booking.domain.statuses import HOST_BLOCK_STATUSES, AvailabilityStatus
from rental_booking.models.availability import PropertyAvailability
from rental_booking.models.booking import Booking
from rental_booking.services.interfaces.locking import property_lock_key

logger = get_logger(__name__)

ACTIVE_VALUES = sorted(s.value for s in ACTIVE_STATUSES)
OCCUPYING_VALUES = sorted(s.value for s in OCCUPYING_STATUSES)
HOST_BLOCK_VALUES = [s.value for s in HOST_BLOCK_STATUSES]

MAX_CALENDAR_DAYS = 366


def _check_window(start: date, end: date, max_days: Optional[int] = None) -> None:
    if start >= end:
        raise ValidationError("Start date must be before end date", field="end")
    if max_days is not None and (end - start).days > max_days:
        raise ValidationError(f"Date window cannot exceed {max_days} days", field="end")


async def find_conflicts(
    db: AsyncSession,
    property_id: int,
    check_in: date,
    check_out: date,
    exclude_booking_id: Optional[int] = None,
    for_update: bool = False,
) -> list[Booking]:
    """Active bookings on the property overlapping [check_in, check_out)."""
    stmt = select(Booking).where(
        Booking.property_id == property_id,
        Booking.status.in_(ACTIVE_VALUES),
        Booking.check_in < check_out,
        Booking.check_out > check_in,
    )
    if exclude_booking_id is not None:
        stmt = stmt.where(Booking.id != exclude_booking_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def find_blocked_dates(db: AsyncSession, property_id: int, start: date, end: date) -> list[date]:
    result = await db.execute(
        select(PropertyAvailability.date)
        .where(
            PropertyAvailability.property_id == property_id,
            PropertyAvailability.date >= start,
            PropertyAvailability.date < end,
            PropertyAvailability.status.in_(HOST_BLOCK_VALUES),
        )
        .order_by(PropertyAvailability.date)
    )
    return list(result.scalars().all())


async def is_range_available(db: AsyncSession, property_id: int, start: date, end: date) -> bool:
    _check_window(start, end)
    if await find_conflicts(db, property_id, start, end):
        return False
    return not await find_blocked_dates(db, property_id, start, end)


async def recompute_availability(db: AsyncSession, property_id: int, start: date, end: date) -> int:
    """
    Rewrite BOOKED rows for [start, end) from the active booking set.
    Caller holds the property lock and commits. Returns the number of
    booked dates written.
    """
    await db.execute(
        delete(PropertyAvailability)
        .where(
            PropertyAvailability.property_id == property_id,
            PropertyAvailability.date >= start,
            PropertyAvailability.date < end,
            PropertyAvailability.status == AvailabilityStatus.BOOKED.value,
        )
        .execution_options(synchronize_session="fetch")
    )

    blocked = set(await find_blocked_dates(db, property_id, start, end))
    written = 0
    for booking in await find_conflicts(db, property_id, start, end):
        for night in iter_nights(max(booking.check_in, start), min(booking.check_out, end)):
            if night in blocked:
                logger.warning(
                    "availability_booking_on_blocked_date",
                    property_id=property_id,
                    date=night.isoformat(),
                    booking_id=booking.id,
                )
                continue
            db.add(
                PropertyAvailability(
                    property_id=property_id,
                    date=night,
                    status=AvailabilityStatus.BOOKED.value,
                    booking_id=booking.id,
                )
            )
            written += 1

    await db.flush()
    logger.debug(
        "availability_recomputed",
        property_id=property_id,
        start=start.isoformat(),
        end=end.isoformat(),
        booked_dates=written,
    )
    return written


async def block_dates(
    db: AsyncSession,
    ctx: AppContext,
    property_id: int,
    start: date,
    end: date,
    status: AvailabilityStatus = AvailabilityStatus.BLOCKED,
    notes: Optional[str] = None,
) -> int:
    """Host block of [start, end). Rejected if any date is held by an active booking."""
    status = AvailabilityStatus(status)
    if status not in HOST_BLOCK_STATUSES:
        raise ValidationError(f"{status.value} is not a host block status", field="status")
    _check_window(start, end, MAX_CALENDAR_DAYS)

    async with ctx.locks.acquire(property_lock_key(property_id)), storage_errors(db, "block_dates"):
        conflicts = await find_conflicts(db, property_id, start, end, for_update=True)
        if conflicts:
            raise ConflictError(
                "Dates are held by an active booking",
                property_id=property_id,
                bookings=[b.reference for b in conflicts],
            )

        result = await db.execute(
            select(PropertyAvailability).where(
                PropertyAvailability.property_id == property_id,
                PropertyAvailability.date >= start,
                PropertyAvailability.date < end,
            )
        )
        existing = {row.date: row for row in result.scalars().all()}

        count = 0
        for day in iter_nights(start, end):
            row = existing.get(day)
            if row is None:
                db.add(PropertyAvailability(property_id=property_id, date=day, status=status.value, notes=notes))
            else:
                row.status = status.value
                row.booking_id = None
                row.notes = notes
            count += 1
        await db.commit()

    await ctx.cache.invalidate_property(property_id)
    logger.info(
        "dates_blocked",
        property_id=property_id,
        start=start.isoformat(),
        end=end.isoformat(),
        status=status.value,
        days=count,
    )
    return count


async def unblock_dates(db: AsyncSession, ctx: AppContext, property_id: int, start: date, end: date) -> int:
    _check_window(start, end, MAX_CALENDAR_DAYS)

    async with ctx.locks.acquire(property_lock_key(property_id)), storage_errors(db, "unblock_dates"):
        result = await db.execute(
            delete(PropertyAvailability)
            .where(
                PropertyAvailability.property_id == property_id,
                PropertyAvailability.date >= start,
                PropertyAvailability.date < end,
                PropertyAvailability.status.in_(HOST_BLOCK_VALUES),
            )
            .execution_options(synchronize_session="fetch")
        )
        await db.commit()

    await ctx.cache.invalidate_property(property_id)
    logger.info(
        "dates_unblocked",
        property_id=property_id,
        start=start.isoformat(),
        end=end.isoformat(),
        days=result.rowcount,
    )
    return result.rowcount


async def get_calendar(
    db: AsyncSession,
    ctx: AppContext,
    property_id: int,
    start: date,
    end: date,
) -> list[dict]:
    """One entry per date in [start, end); dates without a row are AVAILABLE."""
    _check_window(start, end, MAX_CALENDAR_DAYS)

    cached = await ctx.cache.get_calendar(property_id, start, end)
    if cached is not None:
        return cached

    result = await db.execute(
        select(PropertyAvailability).where(
            PropertyAvailability.property_id == property_id,
            PropertyAvailability.date >= start,
            PropertyAvailability.date < end,
        )
    )
    rows = {row.date: row for row in result.scalars().all()}

    days = []
    for day in iter_nights(start, end):
        row = rows.get(day)
        days.append({
            "date": day.isoformat(),
            "status": row.status if row else AvailabilityStatus.AVAILABLE.value,
            "booking_id": row.booking_id if row else None,
            "notes": row.notes if row else None,
        })

    await ctx.cache.set_calendar(property_id, start, end, days)
    return days


async def occupancy_rate(db: AsyncSession, property_id: int, start: date, end: date) -> Decimal:
    """Booked nights / days in [start, end), excluding CANCELLED and NO_SHOW bookings."""
    _check_window(start, end)
    result = await db.execute(
        select(Booking.check_in, Booking.check_out).where(
            Booking.property_id == property_id,
            Booking.status.in_(OCCUPYING_VALUES),
            Booking.check_in < end,
            Booking.check_out > start,
        )
    )
    return occupancy(result.all(), start, end)
