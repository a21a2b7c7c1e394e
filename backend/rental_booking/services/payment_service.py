"""
Payment registration and lookups.

A payment is registered when the guest starts checkout with the provider,
so later provider notifications (keyed by order / capture / transaction id)
can be matched back to the booking.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rental_booking.core.context import AppContext
from rental_booking.core.exceptions import NotFoundError, ValidationError
from rental_booking.core.logging import bind_booking_context, get_logger
from rental_booking.domain.pricing import to_money
from rental_booking.domain.state_machine import is_active
from rental_booking.domain.statuses import PaymentStatus
from rental_booking.models.payment import Payment
from rental_booking.services.booking_service import get_booking
from rental_booking.services.interfaces.locking import booking_lock_key

logger = get_logger(__name__)


async def register_payment(
    db: AsyncSession,
    ctx: AppContext,
    booking_reference: str,
    order_id: str,
    amount: Optional[Decimal] = None,
) -> Payment:
    """
    Create a PENDING payment for an active booking.
    Re-registering the same order for the same booking returns the existing payment.
    """
    booking = await get_booking(db, booking_reference)
    bind_booking_context(booking_reference=booking_reference, order_id=order_id)

    async with ctx.locks.acquire(booking_lock_key(booking.id)):
        await db.refresh(booking)
        existing = await find_by_order_id(db, order_id)
        if existing is not None:
            if existing.booking_id != booking.id:
                raise ValidationError("Order id is already registered to another booking", field="order_id")
            logger.info("payment_already_registered", payment_reference=existing.reference)
            return existing

        if not is_active(booking.status):
            raise ValidationError(
                f"Cannot register a payment for a {booking.status} booking", field="booking_reference"
            )

        charge = to_money(amount, "amount") if amount is not None else booking.total_price
        if charge <= 0:
            raise ValidationError("Payment amount must be greater than zero", field="amount")

        payment = Payment(
            booking_id=booking.id,
            amount=charge,
            currency=booking.currency,
            status=PaymentStatus.PENDING.value,
            provider_order_id=order_id,
            max_retries=ctx.settings.PAYMENT_MAX_RETRIES,
        )
        db.add(payment)
        await db.commit()

    logger.info(
        "payment_registered",
        payment_reference=payment.reference,
        amount=str(payment.amount),
        currency=payment.currency,
    )
    return payment


async def get_payment(db: AsyncSession, reference: str) -> Payment:
    result = await db.execute(select(Payment).where(Payment.reference == reference))
    payment = result.scalar_one_or_none()
    if payment is None:
        raise NotFoundError("Payment", reference)
    return payment


async def find_by_order_id(db: AsyncSession, order_id: str) -> Optional[Payment]:
    result = await db.execute(
        select(Payment).where(Payment.provider_order_id == order_id).order_by(Payment.id.desc()).limit(1)
    )
    return result.scalar_one_or_none()


async def find_by_capture_id(db: AsyncSession, capture_id: str) -> Optional[Payment]:
    result = await db.execute(select(Payment).where(Payment.provider_capture_id == capture_id))
    return result.scalar_one_or_none()


async def find_by_transaction_id(db: AsyncSession, transaction_id: str) -> Optional[Payment]:
    result = await db.execute(
        select(Payment)
        .where(Payment.provider_transaction_id == transaction_id)
        .order_by(Payment.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def find_payment(
    db: AsyncSession,
    capture_id: Optional[str] = None,
    order_id: Optional[str] = None,
    transaction_id: Optional[str] = None,
) -> Optional[Payment]:
    """Look up by capture id, then order id, then transaction id."""
    if capture_id:
        payment = await find_by_capture_id(db, capture_id)
        if payment is not None:
            return payment
    if order_id:
        payment = await find_by_order_id(db, order_id)
        if payment is not None:
            return payment
    if transaction_id:
        return await find_by_transaction_id(db, transaction_id)
    return None


async def list_booking_payments(db: AsyncSession, booking_id: int) -> list[Payment]:
    result = await db.execute(
        select(Payment).where(Payment.booking_id == booking_id).order_by(Payment.created_at, Payment.id)
    )
    return list(result.scalars().all())
