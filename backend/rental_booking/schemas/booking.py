"""
Pydantic schemas for booking-related request/response validation.

Only request shape is checked here; stay and pricing rules are enforced by
the reservation validator so every rule violation maps to one error code.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from rental_booking.domain.statuses import BookingStatus


class BookingCreate(BaseModel):
    property_id: int
    guest_id: int
    check_in: date
    check_out: date
    guests: int = 1
    discount: Optional[Decimal] = None


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)
    cancelled_by: Optional[str] = Field(None, max_length=50)


class BookingAction(BaseModel):
    actor: Optional[str] = Field(None, max_length=50)


class BookingResponse(BaseModel):
    id: int
    reference: str
    property_id: int
    guest_id: int
    check_in: date
    check_out: date
    guests: int
    nights: int
    base_price: Decimal
    cleaning_fee: Optional[Decimal]
    service_fee: Optional[Decimal]
    security_deposit: Optional[Decimal]
    tax: Optional[Decimal]
    discount: Optional[Decimal]
    total_price: Decimal
    currency: str
    status: BookingStatus
    payment_status: str
    is_instant_book: bool
    cancellation_reason: Optional[str]
    cancelled_by: Optional[str]
    cancelled_at: Optional[datetime]
    version: int
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingListResponse(BaseModel):
    bookings: list[BookingResponse]
    total: int
    page: int
    page_size: int


class BookingStatistics(BaseModel):
    total_bookings: int
    by_status: dict[str, int]
    total_revenue: Decimal
    average_booking_value: Decimal
    unique_guests: int
    unique_properties: int
