"""
Per-date availability record for a property.

Rows are derived state: BOOKED rows are rewritten from the active booking set
whenever it changes, and host blocks (BLOCKED / MAINTENANCE / UNAVAILABLE)
are written directly. A missing row means AVAILABLE.
"""

from sqlalchemy import Column, Date, ForeignKey, Integer, String, Text, UniqueConstraint

from rental_booking.db.base import Base, TimestampMixin
from rental_booking.domain.statuses import AvailabilityStatus

_AVAILABILITY_STATUSES = ", ".join(f"'{s.value}'" for s in AvailabilityStatus)


class PropertyAvailability(Base, TimestampMixin):
    __tablename__ = "property_availability"

    id = Column(Integer, primary_key=True)
    property_id = Column(Integer, nullable=False, index=True)
    date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default=AvailabilityStatus.AVAILABLE.value)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("property_id", "date", name="uq_property_availability_date"),
    )

    def __repr__(self) -> str:
        return f"<PropertyAvailability(property={self.property_id}, date={self.date}, status={self.status})>"
