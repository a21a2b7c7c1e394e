"""
Booking model: a guest's reservation of a property for a half-open
date range [check_in, check_out).

Key design decisions:
- Property and guest are referenced by id only; both live in other services
- Status changes never delete rows, so history stays queryable
- `version` backs optimistic locking on every lifecycle update
- The no-overlap rule for active bookings is enforced by the reservation
  lock and, on PostgreSQL, by an exclusion constraint (see migration 001)
"""

import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)

from rental_booking.db.base import Base, TimestampMixin
from rental_booking.domain.statuses import BookingStatus, PaymentStatus


def new_booking_reference() -> str:
    return "BK" + uuid.uuid4().hex[:12].upper()


_BOOKING_STATUSES = ", ".join(f"'{s.value}'" for s in BookingStatus)


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(20), nullable=False, unique=True, default=new_booking_reference)
    property_id = Column(Integer, nullable=False, index=True)
    guest_id = Column(Integer, nullable=False, index=True)

    check_in = Column(Date, nullable=False)
    check_out = Column(Date, nullable=False)
    guests = Column(Integer, nullable=False)
    nights = Column(Integer, nullable=False)

    # Price breakdown
    base_price = Column(Numeric(12, 2), nullable=False)
    cleaning_fee = Column(Numeric(12, 2), nullable=True)
    service_fee = Column(Numeric(12, 2), nullable=True)
    security_deposit = Column(Numeric(12, 2), nullable=True)
    tax = Column(Numeric(12, 2), nullable=True)
    discount = Column(Numeric(12, 2), nullable=True)
    total_price = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    is_instant_book = Column(Boolean, nullable=False, default=False)

    cancellation_reason = Column(Text, nullable=True)
    cancelled_by = Column(String(50), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("check_in < check_out", name="check_booking_dates"),
        CheckConstraint("nights > 0", name="check_booking_nights_positive"),
        CheckConstraint("guests > 0", name="check_booking_guests_positive"),
        CheckConstraint("total_price > 0", name="check_booking_total_positive"),
        CheckConstraint(f"status IN ({_BOOKING_STATUSES})", name="check_booking_status"),
        Index("ix_bookings_property_dates", "property_id", "check_in", "check_out"),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking(ref={self.reference}, property={self.property_id}, "
            f"{self.check_in}..{self.check_out}, status={self.status})>"
        )
