"""
Booking endpoints: concurrency-safe reservation and lifecycle transitions.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from rental_booking.core.context import AppContext, get_context
from rental_booking.db.session import get_db
from rental_booking.domain.statuses import BookingStatus
from rental_booking.schemas.booking import (
    BookingAction,
    BookingCancel,
    BookingCreate,
    BookingListResponse,
    BookingResponse,
    BookingStatistics,
)
from rental_booking.services import booking_service
from rental_booking.services.reservation_service import create_reservation

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    """
    Reserve a property for a date range.

    The overlap check and the insert run under a per-property lock, so of
    two simultaneous requests for overlapping dates exactly one succeeds and
    the other gets 409 `dates_unavailable`. A lock wait timeout returns 503
    `try_again`.
    """
    return await create_reservation(
        db,
        ctx,
        property_id=booking_data.property_id,
        guest_id=booking_data.guest_id,
        check_in=booking_data.check_in,
        check_out=booking_data.check_out,
        guests=booking_data.guests,
        discount=booking_data.discount,
    )


@router.get("", response_model=BookingListResponse)
async def list_bookings(
    guest_id: Optional[int] = None,
    property_id: Optional[int] = None,
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    bookings, total = await booking_service.list_bookings(
        db, guest_id=guest_id, property_id=property_id, status=status_filter,
        page=page, page_size=page_size,
    )
    return BookingListResponse(bookings=bookings, total=total, page=page, page_size=page_size)


@router.get("/export")
async def export_bookings(
    guest_id: Optional[int] = None,
    property_id: Optional[int] = None,
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
):
    """Bookings as CSV, newest first."""
    content = await booking_service.export_bookings_csv(
        db, guest_id=guest_id, property_id=property_id, status=status_filter
    )
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="bookings.csv"'},
    )


@router.get("/statistics", response_model=BookingStatistics)
async def booking_statistics(
    property_id: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
):
    return await booking_service.booking_statistics(db, property_id=property_id)


@router.get("/{reference}", response_model=BookingResponse)
async def get_booking(reference: str, db: AsyncSession = Depends(get_db)):
    return await booking_service.get_booking(db, reference)


@router.post("/{reference}/confirm", response_model=BookingResponse)
async def confirm_booking(
    reference: str,
    action: Optional[BookingAction] = None,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    return await booking_service.confirm(db, ctx, reference, actor=action.actor if action else None)


@router.post("/{reference}/check-in", response_model=BookingResponse)
async def check_in_booking(
    reference: str,
    action: Optional[BookingAction] = None,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    return await booking_service.check_in(db, ctx, reference, actor=action.actor if action else None)


@router.post("/{reference}/check-out", response_model=BookingResponse)
async def check_out_booking(
    reference: str,
    action: Optional[BookingAction] = None,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    return await booking_service.check_out(db, ctx, reference, actor=action.actor if action else None)


@router.post("/{reference}/complete", response_model=BookingResponse)
async def complete_booking(
    reference: str,
    action: Optional[BookingAction] = None,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    return await booking_service.complete(db, ctx, reference, actor=action.actor if action else None)


@router.post("/{reference}/no-show", response_model=BookingResponse)
async def mark_no_show(
    reference: str,
    action: Optional[BookingAction] = None,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    return await booking_service.mark_no_show(db, ctx, reference, actor=action.actor if action else None)


@router.post("/{reference}/cancel", response_model=BookingResponse)
async def cancel_booking(
    reference: str,
    cancellation: Optional[BookingCancel] = None,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    """Cancel a booking and release its dates."""
    cancellation = cancellation or BookingCancel()
    return await booking_service.cancel(
        db, ctx, reference, reason=cancellation.reason, actor=cancellation.cancelled_by
    )
