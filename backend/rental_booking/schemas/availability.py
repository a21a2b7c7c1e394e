"""
Pydantic schemas for availability, calendar and host block endpoints.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from rental_booking.domain.statuses import AvailabilityStatus


class AvailabilityResponse(BaseModel):
    property_id: int
    check_in: date
    check_out: date
    available: bool


class CalendarDay(BaseModel):
    date: date
    status: AvailabilityStatus
    booking_id: Optional[int] = None
    notes: Optional[str] = None


class CalendarResponse(BaseModel):
    property_id: int
    start: date
    end: date
    days: list[CalendarDay]


class BlockRequest(BaseModel):
    start: date
    end: date
    status: AvailabilityStatus = AvailabilityStatus.BLOCKED
    notes: Optional[str] = Field(None, max_length=500)


class BlockResponse(BaseModel):
    property_id: int
    start: date
    end: date
    days: int


class OccupancyResponse(BaseModel):
    property_id: int
    start: date
    end: date
    occupancy_rate: Decimal
