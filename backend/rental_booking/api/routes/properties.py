"""
Availability endpoints: range checks, calendars, host blocks and occupancy.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rental_booking.core.context import AppContext, get_context
from rental_booking.db.session import get_db
from rental_booking.schemas.availability import (
    AvailabilityResponse,
    BlockRequest,
    BlockResponse,
    CalendarResponse,
    OccupancyResponse,
)
from rental_booking.services import availability_service

router = APIRouter(prefix="/properties", tags=["Availability"])


@router.get("/{property_id}/availability", response_model=AvailabilityResponse)
async def check_availability(
    property_id: int,
    check_in: date = Query(...),
    check_out: date = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """Whether [check_in, check_out) is free right now. Not a reservation."""
    available = await availability_service.is_range_available(db, property_id, check_in, check_out)
    return AvailabilityResponse(
        property_id=property_id, check_in=check_in, check_out=check_out, available=available
    )


@router.get("/{property_id}/calendar", response_model=CalendarResponse)
async def get_calendar(
    property_id: int,
    start: date = Query(...),
    end: date = Query(...),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    """Per-date status for [start, end). Served from cache when possible."""
    days = await availability_service.get_calendar(db, ctx, property_id, start, end)
    return CalendarResponse(property_id=property_id, start=start, end=end, days=days)


@router.post("/{property_id}/blocks", response_model=BlockResponse)
async def block_dates(
    property_id: int,
    block: BlockRequest,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    days = await availability_service.block_dates(
        db, ctx, property_id, block.start, block.end, status=block.status, notes=block.notes
    )
    return BlockResponse(property_id=property_id, start=block.start, end=block.end, days=days)


@router.delete("/{property_id}/blocks", response_model=BlockResponse)
async def unblock_dates(
    property_id: int,
    start: date = Query(...),
    end: date = Query(...),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    days = await availability_service.unblock_dates(db, ctx, property_id, start, end)
    return BlockResponse(property_id=property_id, start=start, end=end, days=days)


@router.get("/{property_id}/occupancy", response_model=OccupancyResponse)
async def occupancy(
    property_id: int,
    start: date = Query(...),
    end: date = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """Booked nights divided by days in [start, end)."""
    rate = await availability_service.occupancy_rate(db, property_id, start, end)
    return OccupancyResponse(property_id=property_id, start=start, end=end, occupancy_rate=rate)
