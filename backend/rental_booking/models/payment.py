"""
Payment model: one provider checkout attempt for a booking.

Provider identifiers are the idempotency keys for webhook reconciliation.
`provider_capture_id` is globally unique and never overwritten once set.
"""

import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, Text

from rental_booking.db.base import Base, TimestampMixin
from rental_booking.domain.statuses import PaymentStatus


def new_payment_reference() -> str:
    return "PAY" + uuid.uuid4().hex[:12].upper()


class Payment(Base, TimestampMixin):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String(20), nullable=False, unique=True, default=new_payment_reference)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)

    provider_order_id = Column(String(100), nullable=True, index=True)
    provider_capture_id = Column(String(100), nullable=True, unique=True)
    provider_transaction_id = Column(String(100), nullable=True, index=True)
    provider_refund_id = Column(String(100), nullable=True)

    captured_amount = Column(Numeric(12, 2), nullable=True)
    captured_currency = Column(String(3), nullable=True)
    refund_amount = Column(Numeric(12, 2), nullable=True)
    is_partial_refund = Column(Boolean, nullable=False, default=False)
    failure_reason = Column(Text, nullable=True)

    processed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)

    __table_args__ = (
        CheckConstraint("amount > 0", name="check_payment_amount_positive"),
        CheckConstraint("retry_count >= 0", name="check_payment_retry_count"),
    )

    def __repr__(self) -> str:
        return f"<Payment(ref={self.reference}, booking={self.booking_id}, status={self.status})>"
