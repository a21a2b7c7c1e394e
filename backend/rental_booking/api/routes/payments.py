"""
Payment registration and provider webhook endpoints.
"""

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from rental_booking.core.context import AppContext, get_context
from rental_booking.core.logging import get_logger
from rental_booking.db.session import get_db
from rental_booking.schemas.payment import PaymentCreate, PaymentResponse, WebhookAck
from rental_booking.services import payment_service, reconciliation_service

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])
webhook_router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def register_payment(
    payment_data: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    """Link a provider order to a booking so its notifications can be matched."""
    return await payment_service.register_payment(
        db, ctx, payment_data.booking_reference, payment_data.order_id, payment_data.amount
    )


@router.get("/{reference}", response_model=PaymentResponse)
async def get_payment(reference: str, db: AsyncSession = Depends(get_db)):
    return await payment_service.get_payment(db, reference)


@webhook_router.post("/payments", response_model=WebhookAck)
async def payment_webhook(
    payload: dict = Body(...),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    """
    Provider notification endpoint. Signature verification happens upstream.

    Always 200 unless the payload is malformed (400): business mismatches
    such as an unknown payment are acknowledged so the provider does not
    keep redelivering an event it cannot fix.
    """
    result = await reconciliation_service.process_event(db, ctx, payload)
    return WebhookAck(outcome=result.outcome, event_type=result.event_type)
