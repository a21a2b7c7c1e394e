"""
Record of provider events that were processed, keyed by the provider's
event id. Replaying an id already present here is a no-op.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from rental_booking.db.base import Base, utcnow


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True)
    event_id = Column(String(100), nullable=False, unique=True)
    event_type = Column(String(100), nullable=False)
    outcome = Column(String(20), nullable=False)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=True, index=True)
    received_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
