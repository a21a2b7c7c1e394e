"""
Payment reconciliation: apply provider notifications to Payment and Booking.

Provider delivery is at-least-once and unordered, so every event is
processed as one atomic unit under the booking lock:

  1. Find the payment by capture id, then order id, then transaction id.
     Unknown payments are logged and acknowledged (outcome `not_found`).
  2. Skip events already seen: a recorded provider event id, or an event
     whose effect is already reflected in the stored payment (`duplicate`).
  3. Map the event type to a payment status and apply it if the payment
     lifecycle allows it; otherwise record what can be recorded without
     regressing state (`stale`).
  4. A capture on a PENDING instant-book booking auto-confirms it through
     the booking state machine. A rejection there is logged only.

Event type mapping:

    PAYMENT.CAPTURE.COMPLETED   -> COMPLETED
    CHECKOUT.ORDER.COMPLETED    -> COMPLETED
    PAYMENT.CAPTURE.DENIED      -> FAILED
    PAYMENT.CAPTURE.REVERSED    -> FAILED
    CHECKOUT.ORDER.CANCELLED    -> FAILED
    PAYMENT.CAPTURE.REFUNDED    -> REFUNDED (accepted from any status)
    CHECKOUT.ORDER.APPROVED     -> PENDING

Nothing here raises to the provider except a malformed payload. Internal
failures roll back, are logged, and are re-queued on the event dispatcher
with a linear backoff until WEBHOOK_MAX_RETRIES.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rental_booking.core.context import AppContext
from rental_booking.core.exceptions import MalformedWebhookError, PaymentNotFoundError, StateError
from rental_booking.core.logging import bind_booking_context, get_logger
from rental_booking.core.metrics import record_webhook_event
from rental_booking.db.base import utcnow
from rental_booking.domain.events import BookingStatusChanged, WebhookRetryRequested
from rental_booking.domain.pricing import CENTS
from rental_booking.domain.state_machine import can_transition_payment, is_payment_retry
from rental_booking.domain.statuses import BookingStatus, PaymentStatus
from rental_booking.models.booking import Booking
from rental_booking.models.payment import Payment
from rental_booking.models.payment_refund import PaymentRefund
from rental_booking.models.webhook_event import WebhookEvent
from rental_booking.schemas.payment import WebhookPayload
from rental_booking.services import booking_service, payment_service
from rental_booking.services.event_dispatcher import EventDispatcher
from rental_booking.services.interfaces.locking import booking_lock_key

logger = get_logger(__name__)

CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"
CAPTURE_DENIED = "PAYMENT.CAPTURE.DENIED"
CAPTURE_REFUNDED = "PAYMENT.CAPTURE.REFUNDED"
CAPTURE_REVERSED = "PAYMENT.CAPTURE.REVERSED"
ORDER_APPROVED = "CHECKOUT.ORDER.APPROVED"
ORDER_COMPLETED = "CHECKOUT.ORDER.COMPLETED"
ORDER_CANCELLED = "CHECKOUT.ORDER.CANCELLED"

EVENT_STATUS = {
    CAPTURE_COMPLETED: PaymentStatus.COMPLETED,
    ORDER_COMPLETED: PaymentStatus.COMPLETED,
    CAPTURE_DENIED: PaymentStatus.FAILED,
    CAPTURE_REVERSED: PaymentStatus.FAILED,
    ORDER_CANCELLED: PaymentStatus.FAILED,
    CAPTURE_REFUNDED: PaymentStatus.REFUNDED,
    ORDER_APPROVED: PaymentStatus.PENDING,
}

CAPTURE_EVENTS = frozenset({CAPTURE_COMPLETED, CAPTURE_DENIED, CAPTURE_REFUNDED, CAPTURE_REVERSED})

APPLIED = "applied"
DUPLICATE = "duplicate"
STALE = "stale"
NOT_FOUND = "not_found"
UNHANDLED = "unhandled"
DEFERRED = "deferred"
FAILED = "failed"

PROVIDER_ACTOR = "payment_provider"


@dataclass
class ReconciliationResult:
    outcome: str
    event_type: str
    event_id: Optional[str] = None
    payment_reference: Optional[str] = None
    payment_status: Optional[str] = None
    booking_reference: Optional[str] = None
    booking_status: Optional[str] = None
    detail: Optional[str] = None


@dataclass(frozen=True)
class ProviderIdentifiers:
    capture_id: Optional[str]
    order_id: Optional[str]
    transaction_id: Optional[str]


def parse_payload(payload: dict) -> WebhookPayload:
    try:
        return WebhookPayload.model_validate(payload)
    except PydanticValidationError as e:
        logger.warning("webhook_malformed", errors=e.error_count())
        raise MalformedWebhookError("Webhook payload is malformed", errors=e.errors(include_url=False))


def extract_identifiers(event: WebhookPayload) -> ProviderIdentifiers:
    """
    Capture events carry the capture id in `resource.id` and our order id in
    `resource.custom_id`; order events carry the order id in `resource.id`.
    """
    resource = event.resource
    if event.event_type in CAPTURE_EVENTS:
        return ProviderIdentifiers(
            capture_id=resource.id,
            order_id=resource.custom_id,
            transaction_id=resource.id,
        )
    return ProviderIdentifiers(capture_id=None, order_id=resource.id or resource.custom_id, transaction_id=None)


async def process_event(db: AsyncSession, ctx: AppContext, payload: dict, attempt: int = 1) -> ReconciliationResult:
    """
    Reconcile one provider notification.

    Raises:
        MalformedWebhookError: payload does not have the provider event shape
    """
    event = parse_payload(payload)
    bind_booking_context(webhook_event_id=event.id, event_type=event.event_type)

    if event.event_type not in EVENT_STATUS:
        logger.info("webhook_unhandled_event_type", event_type=event.event_type)
        return _finish(ReconciliationResult(UNHANDLED, event.event_type, event.id))

    try:
        result = await _reconcile(db, ctx, event)
    except Exception as e:
        await db.rollback()
        return _finish(_defer(ctx, event, payload, attempt, e))

    return _finish(result)


async def _reconcile(db: AsyncSession, ctx: AppContext, event: WebhookPayload) -> ReconciliationResult:
    ids = extract_identifiers(event)
    payment = await payment_service.find_payment(db, ids.capture_id, ids.order_id, ids.transaction_id)
    if payment is None:
        error = PaymentNotFoundError(
            "No payment matches provider identifiers",
            capture_id=ids.capture_id,
            order_id=ids.order_id,
        )
        logger.warning(
            "webhook_payment_not_found",
            code=error.code,
            capture_id=ids.capture_id,
            order_id=ids.order_id,
        )
        return ReconciliationResult(NOT_FOUND, event.event_type, event.id, detail=error.message)

    async with ctx.locks.acquire(booking_lock_key(payment.booking_id)):
        await db.refresh(payment)
        booking = await db.get(Booking, payment.booking_id, populate_existing=True)
        bind_booking_context(payment_reference=payment.reference, booking_reference=booking.reference)

        if event.id and await _seen(db, event.id):
            logger.info("webhook_duplicate", reason="event_id")
            return _result(DUPLICATE, event, payment, booking)

        outcome = await _apply(db, payment, event, ids)

        confirmed = False
        if outcome == APPLIED:
            booking.payment_status = _mirrored_status(payment)
            confirmed = await _auto_confirm(db, ctx, payment, booking)

        if event.id:
            db.add(
                WebhookEvent(
                    event_id=event.id,
                    event_type=event.event_type,
                    outcome=outcome,
                    payment_id=payment.id,
                )
            )
        await db.commit()

    if confirmed:
        await ctx.dispatcher.publish(
            BookingStatusChanged(
                booking_reference=booking.reference,
                property_id=booking.property_id,
                previous_status=BookingStatus.PENDING.value,
                status=BookingStatus.CONFIRMED.value,
                actor=PROVIDER_ACTOR,
            )
        )

    logger.info(
        "webhook_reconciled",
        outcome=outcome,
        payment_status=payment.status,
        booking_status=booking.status,
    )
    return _result(outcome, event, payment, booking)


async def _seen(db: AsyncSession, event_id: str) -> bool:
    result = await db.execute(select(WebhookEvent.id).where(WebhookEvent.event_id == event_id))
    return result.scalar_one_or_none() is not None


async def _apply(db: AsyncSession, payment: Payment, event: WebhookPayload, ids: ProviderIdentifiers) -> str:
    target = EVENT_STATUS[event.event_type]
    if target == PaymentStatus.COMPLETED:
        return _apply_completed(payment, event, ids)
    if target == PaymentStatus.FAILED:
        return _apply_failed(payment, event, ids)
    if target == PaymentStatus.REFUNDED:
        return await _apply_refunded(db, payment, event)
    return _apply_approved(payment)


def _record_capture_id(payment: Payment, capture_id: Optional[str]) -> bool:
    """Set the capture id once. Returns False if a different one is already stored."""
    if not capture_id:
        return True
    if payment.provider_capture_id is None:
        payment.provider_capture_id = capture_id
        if payment.provider_transaction_id is None:
            payment.provider_transaction_id = capture_id
        return True
    return payment.provider_capture_id == capture_id


def _leave_failed(payment: Payment, target: PaymentStatus) -> bool:
    """Count a retry when leaving FAILED. False once the retry budget is spent."""
    if not is_payment_retry(payment.status, target):
        return True
    if payment.retry_count >= payment.max_retries:
        logger.warning(
            "payment_retry_budget_exhausted",
            retry_count=payment.retry_count,
            max_retries=payment.max_retries,
        )
        return False
    payment.retry_count += 1
    return True


def _apply_completed(payment: Payment, event: WebhookPayload, ids: ProviderIdentifiers) -> str:
    current = PaymentStatus(payment.status)
    had_capture = payment.provider_capture_id is not None

    if ids.capture_id and had_capture and payment.provider_capture_id != ids.capture_id:
        logger.warning(
            "webhook_capture_id_mismatch",
            stored=payment.provider_capture_id,
            received=ids.capture_id,
        )
        return STALE

    if current == PaymentStatus.COMPLETED:
        if ids.capture_id and not had_capture:
            _record_capture_id(payment, ids.capture_id)
            return APPLIED
        logger.info("webhook_duplicate", reason="already_completed")
        return DUPLICATE

    if not can_transition_payment(current, PaymentStatus.COMPLETED):
        # Late capture after a refund: keep the status, keep the identifiers.
        _record_capture_id(payment, ids.capture_id)
        logger.info("webhook_stale", current=current.value, target=PaymentStatus.COMPLETED.value)
        return STALE

    if not _leave_failed(payment, PaymentStatus.COMPLETED):
        return STALE

    _record_capture_id(payment, ids.capture_id)
    amount = event.resource.amount
    if amount is not None and amount.value is not None:
        payment.captured_amount = amount.value.quantize(CENTS)
        payment.captured_currency = amount.currency_code or payment.currency
    payment.status = PaymentStatus.COMPLETED.value
    payment.processed_at = utcnow()
    payment.failure_reason = None
    return APPLIED


def _apply_failed(payment: Payment, event: WebhookPayload, ids: ProviderIdentifiers) -> str:
    current = PaymentStatus(payment.status)

    if current == PaymentStatus.FAILED:
        logger.info("webhook_duplicate", reason="already_failed")
        return DUPLICATE

    # Only a reversal can undo a completed capture; a denial or order
    # cancellation arriving after completion is out of order.
    if current == PaymentStatus.COMPLETED and event.event_type != CAPTURE_REVERSED:
        logger.info("webhook_stale", current=current.value, target=PaymentStatus.FAILED.value)
        return STALE

    if not can_transition_payment(current, PaymentStatus.FAILED):
        logger.info("webhook_stale", current=current.value, target=PaymentStatus.FAILED.value)
        return STALE

    if not _record_capture_id(payment, ids.capture_id):
        logger.warning("webhook_capture_id_mismatch", stored=payment.provider_capture_id, received=ids.capture_id)
        return STALE

    details = event.resource.details
    payment.status = PaymentStatus.FAILED.value
    payment.failed_at = utcnow()
    payment.failure_reason = (details.description if details else None) or event.event_type
    return APPLIED


async def _refund_recorded(db: AsyncSession, refund_id: str) -> bool:
    result = await db.execute(
        select(PaymentRefund.id).where(PaymentRefund.provider_refund_id == refund_id)
    )
    return result.scalar_one_or_none() is not None


async def _apply_refunded(db: AsyncSession, payment: Payment, event: WebhookPayload) -> str:
    """
    Every applied refund id is kept in `payment_refunds`, so a redelivered
    refund is a duplicate no matter how many refunds arrived after it.
    """
    refund_id = event.resource.id
    amount = event.resource.amount
    refund = amount.value.quantize(CENTS) if amount is not None and amount.value is not None else payment.amount
    refund = min(refund, payment.amount)

    if refund_id and await _refund_recorded(db, refund_id):
        logger.info("webhook_duplicate", reason="refund_recorded", refund_id=refund_id)
        return DUPLICATE

    total = refund
    if payment.status == PaymentStatus.REFUNDED.value:
        if not refund_id:
            logger.info("webhook_duplicate", reason="already_refunded")
            return DUPLICATE
        # A further partial refund against the same payment.
        total = min((payment.refund_amount or Decimal("0")) + refund, payment.amount)

    if refund_id:
        db.add(PaymentRefund(payment_id=payment.id, provider_refund_id=refund_id, amount=refund))

    payment.status = PaymentStatus.REFUNDED.value
    payment.provider_refund_id = refund_id or payment.provider_refund_id
    payment.refund_amount = total
    payment.is_partial_refund = total < payment.amount
    payment.refunded_at = utcnow()
    return APPLIED


def _apply_approved(payment: Payment) -> str:
    current = PaymentStatus(payment.status)
    if current == PaymentStatus.PENDING:
        logger.info("webhook_duplicate", reason="already_pending")
        return DUPLICATE

    if current != PaymentStatus.FAILED or not can_transition_payment(current, PaymentStatus.PENDING):
        logger.info("webhook_stale", current=current.value, target=PaymentStatus.PENDING.value)
        return STALE

    if not _leave_failed(payment, PaymentStatus.PENDING):
        return STALE

    payment.status = PaymentStatus.PENDING.value
    payment.failure_reason = None
    return APPLIED


def _mirrored_status(payment: Payment) -> str:
    if payment.status == PaymentStatus.REFUNDED.value and payment.is_partial_refund:
        return PaymentStatus.PARTIALLY_REFUNDED.value
    return payment.status


async def _auto_confirm(db: AsyncSession, ctx: AppContext, payment: Payment, booking: Booking) -> bool:
    if payment.status != PaymentStatus.COMPLETED.value or not booking.is_instant_book:
        return False
    if booking.status != BookingStatus.PENDING.value:
        logger.debug("auto_confirm_skipped", booking_status=booking.status)
        return False
    try:
        await booking_service.apply_transition(
            db,
            booking,
            BookingStatus.CONFIRMED,
            actor=PROVIDER_ACTOR,
            max_attempts=ctx.settings.MAX_RETRY_ATTEMPTS,
        )
    except StateError as e:
        logger.warning("auto_confirm_rejected", reason=e.message)
        return False
    logger.info("booking_auto_confirmed")
    return True


def _defer(
    ctx: AppContext,
    event: WebhookPayload,
    payload: dict,
    attempt: int,
    error: Exception,
) -> ReconciliationResult:
    max_retries = ctx.settings.WEBHOOK_MAX_RETRIES
    logger.error(
        "webhook_processing_failed",
        attempt=attempt,
        max_retries=max_retries,
        error=str(error),
        error_type=type(error).__name__,
    )
    if attempt >= max_retries:
        logger.error("webhook_retries_exhausted", attempt=attempt)
        return ReconciliationResult(FAILED, event.event_type, event.id, detail=str(error))

    ctx.dispatcher.publish_later(
        WebhookRetryRequested(payload=payload, attempt=attempt + 1),
        delay=ctx.settings.WEBHOOK_RETRY_DELAY_SECONDS * attempt,
    )
    return ReconciliationResult(DEFERRED, event.event_type, event.id, detail=str(error))


def _result(outcome: str, event: WebhookPayload, payment: Payment, booking: Booking) -> ReconciliationResult:
    return ReconciliationResult(
        outcome=outcome,
        event_type=event.event_type,
        event_id=event.id,
        payment_reference=payment.reference,
        payment_status=payment.status,
        booking_reference=booking.reference,
        booking_status=booking.status,
    )


def _finish(result: ReconciliationResult) -> ReconciliationResult:
    record_webhook_event(result.event_type, result.outcome)
    return result


def register_webhook_retry(ctx: AppContext, dispatcher: Optional[EventDispatcher] = None) -> None:
    """Replay deferred events from the dispatcher with a fresh session."""
    dispatcher = dispatcher or ctx.dispatcher

    async def _retry(message: WebhookRetryRequested) -> None:
        async with ctx.session_factory() as db:
            result = await process_event(db, ctx, message.payload, attempt=message.attempt)
        logger.info("webhook_retry_processed", attempt=message.attempt, outcome=result.outcome)

    dispatcher.subscribe(WebhookRetryRequested, _retry)
