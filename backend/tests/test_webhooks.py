"""
Payment registration and webhook reconciliation tests.

Provider delivery is at-least-once and unordered: every test here replays,
reorders or drops events and checks that the stored state converges.
"""

import asyncio
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from rental_booking.services import payment_service
from rental_booking.services.reconciliation_service import process_event

GUEST_ID = 101

START = date.today() + timedelta(days=30)


def day(offset: int) -> str:
    return (START + timedelta(days=offset)).isoformat()


async def book(client, property_id: int = 2, check_in: int = 0, check_out: int = 2) -> dict:
    response = await client.post(
        "/api/v1/bookings",
        json={
            "property_id": property_id,
            "guest_id": GUEST_ID,
            "check_in": day(check_in),
            "check_out": day(check_out),
            "guests": 1,
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


async def register(client, booking: dict, order_id: str = "ORDER-1", amount=None) -> dict:
    body = {"booking_reference": booking["reference"], "order_id": order_id}
    if amount is not None:
        body["amount"] = amount
    response = await client.post("/api/v1/payments", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def capture_event(event_type: str, capture_id: str = "CAP-1", order_id: str = "ORDER-1",
                  value: str = "285.00", event_id=None, **resource) -> dict:
    payload = {
        "event_type": event_type,
        "resource": {
            "id": capture_id,
            "custom_id": order_id,
            "amount": {"currency_code": "USD", "value": value},
            **resource,
        },
    }
    if event_id:
        payload["id"] = event_id
    return payload


async def deliver(client, payload: dict) -> str:
    response = await client.post("/api/v1/webhooks/payments", json=payload)
    assert response.status_code == 200, response.text
    assert response.json()["received"] is True
    return response.json()["outcome"]


async def fetch(client, kind: str, reference: str) -> dict:
    response = await client.get(f"/api/v1/{kind}/{reference}")
    assert response.status_code == 200
    return response.json()


@pytest.mark.asyncio
async def test_register_payment_defaults_to_booking_total(client):
    booking = await book(client)

    payment = await register(client, booking)

    assert payment["reference"].startswith("PAY")
    assert payment["status"] == "PENDING"
    assert payment["booking_id"] == booking["id"]
    # 2 nights at 120.00 + 30.00 cleaning + 15.00 service; deposit held separately
    assert Decimal(payment["amount"]) == Decimal("285.00")
    assert payment["max_retries"] == 3


@pytest.mark.asyncio
async def test_register_same_order_is_idempotent(client):
    booking = await book(client)

    first = await register(client, booking)
    second = await register(client, booking)

    assert first["reference"] == second["reference"]


@pytest.mark.asyncio
async def test_order_cannot_move_between_bookings(client):
    first = await book(client, check_in=0, check_out=2)
    second = await book(client, check_in=2, check_out=4)
    await register(client, first)

    response = await client.post(
        "/api/v1/payments", json={"booking_reference": second["reference"], "order_id": "ORDER-1"}
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_cannot_pay_for_cancelled_booking(client):
    booking = await book(client)
    await client.post(f"/api/v1/bookings/{booking['reference']}/cancel")

    response = await client.post(
        "/api/v1/payments", json={"booking_reference": booking["reference"], "order_id": "ORDER-9"}
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_request"


@pytest.mark.asyncio
async def test_capture_confirms_instant_book(client):
    booking = await book(client)
    payment = await register(client, booking)

    outcome = await deliver(client, capture_event("PAYMENT.CAPTURE.COMPLETED", event_id="WH-1"))

    assert outcome == "applied"
    stored = await fetch(client, "payments", payment["reference"])
    assert stored["status"] == "COMPLETED"
    assert stored["provider_capture_id"] == "CAP-1"
    assert Decimal(stored["captured_amount"]) == Decimal("285.00")
    assert stored["processed_at"] is not None

    confirmed = await fetch(client, "bookings", booking["reference"])
    assert confirmed["status"] == "CONFIRMED"
    assert confirmed["payment_status"] == "COMPLETED"


@pytest.mark.asyncio
async def test_capture_without_instant_book_leaves_booking_pending(client):
    booking = await book(client, property_id=1)
    await register(client, booking)

    await deliver(client, capture_event("PAYMENT.CAPTURE.COMPLETED", value="250.00"))

    stored = await fetch(client, "bookings", booking["reference"])
    assert stored["status"] == "PENDING"
    assert stored["payment_status"] == "COMPLETED"


@pytest.mark.asyncio
async def test_replayed_event_is_a_no_op(client):
    booking = await book(client)
    payment = await register(client, booking)
    event = capture_event("PAYMENT.CAPTURE.COMPLETED", event_id="WH-1")

    assert await deliver(client, event) == "applied"
    after_first = await fetch(client, "bookings", booking["reference"])

    assert await deliver(client, event) == "duplicate"
    # Same effect under a new provider event id
    assert await deliver(client, {**event, "id": "WH-2"}) == "duplicate"

    after_replays = await fetch(client, "bookings", booking["reference"])
    assert after_replays["version"] == after_first["version"]
    assert after_replays["status"] == "CONFIRMED"
    assert (await fetch(client, "payments", payment["reference"]))["status"] == "COMPLETED"


@pytest.mark.asyncio
async def test_order_completed_after_capture_is_duplicate(client):
    booking = await book(client)
    await register(client, booking)

    await deliver(client, capture_event("PAYMENT.CAPTURE.COMPLETED"))
    outcome = await deliver(client, {"event_type": "CHECKOUT.ORDER.COMPLETED", "resource": {"id": "ORDER-1"}})

    assert outcome == "duplicate"


@pytest.mark.asyncio
async def test_refund_before_capture(client):
    """The refund overtakes the capture; the late capture must not resurrect the payment."""
    booking = await book(client)
    payment = await register(client, booking)

    refund = capture_event("PAYMENT.CAPTURE.REFUNDED", capture_id="REF-1", value="285.00")
    assert await deliver(client, refund) == "applied"

    late_capture = capture_event("PAYMENT.CAPTURE.COMPLETED", capture_id="CAP-1")
    assert await deliver(client, late_capture) == "stale"

    stored = await fetch(client, "payments", payment["reference"])
    assert stored["status"] == "REFUNDED"
    assert stored["provider_refund_id"] == "REF-1"
    assert stored["provider_capture_id"] == "CAP-1"
    assert Decimal(stored["refund_amount"]) == Decimal("285.00")
    assert stored["is_partial_refund"] is False

    unconfirmed = await fetch(client, "bookings", booking["reference"])
    assert unconfirmed["status"] == "PENDING"
    assert unconfirmed["payment_status"] == "REFUNDED"


@pytest.mark.asyncio
async def test_partial_refunds_accumulate(client):
    booking = await book(client)
    payment = await register(client, booking)
    await deliver(client, capture_event("PAYMENT.CAPTURE.COMPLETED"))

    await deliver(client, capture_event("PAYMENT.CAPTURE.REFUNDED", capture_id="REF-1", value="100.00"))
    first = await fetch(client, "payments", payment["reference"])
    assert first["is_partial_refund"] is True
    assert (await fetch(client, "bookings", booking["reference"]))["payment_status"] == "PARTIALLY_REFUNDED"

    await deliver(client, capture_event("PAYMENT.CAPTURE.REFUNDED", capture_id="REF-2", value="185.00"))
    second = await fetch(client, "payments", payment["reference"])
    assert Decimal(second["refund_amount"]) == Decimal("285.00")
    assert second["is_partial_refund"] is False

    # Redelivery of the last refund changes nothing
    outcome = await deliver(client, capture_event("PAYMENT.CAPTURE.REFUNDED", capture_id="REF-2", value="185.00"))
    assert outcome == "duplicate"


@pytest.mark.asyncio
async def test_earlier_refund_redelivered_after_a_later_one(client):
    booking = await book(client)
    payment = await register(client, booking)
    await deliver(client, capture_event("PAYMENT.CAPTURE.COMPLETED"))

    await deliver(client, capture_event("PAYMENT.CAPTURE.REFUNDED", capture_id="REF-1", value="100.00"))
    await deliver(client, capture_event("PAYMENT.CAPTURE.REFUNDED", capture_id="REF-2", value="50.00"))
    before = await fetch(client, "payments", payment["reference"])
    assert Decimal(before["refund_amount"]) == Decimal("150.00")

    outcome = await deliver(client, capture_event("PAYMENT.CAPTURE.REFUNDED", capture_id="REF-1", value="100.00"))

    assert outcome == "duplicate"
    after = await fetch(client, "payments", payment["reference"])
    assert Decimal(after["refund_amount"]) == Decimal("150.00")
    assert after["provider_refund_id"] == "REF-2"
    assert after["is_partial_refund"] is True


@pytest.mark.asyncio
async def test_first_refund_is_capped_at_payment_amount(client):
    booking = await book(client)
    payment = await register(client, booking)
    await deliver(client, capture_event("PAYMENT.CAPTURE.COMPLETED"))

    outcome = await deliver(client, capture_event("PAYMENT.CAPTURE.REFUNDED", capture_id="REF-1", value="900.00"))

    assert outcome == "applied"
    stored = await fetch(client, "payments", payment["reference"])
    assert Decimal(stored["refund_amount"]) == Decimal("285.00")
    assert stored["is_partial_refund"] is False


@pytest.mark.asyncio
async def test_denial_then_approval_counts_a_retry(client):
    booking = await book(client)
    payment = await register(client, booking)

    denied = capture_event(
        "PAYMENT.CAPTURE.DENIED", details={"description": "Insufficient funds"}
    )
    assert await deliver(client, denied) == "applied"
    failed = await fetch(client, "payments", payment["reference"])
    assert failed["status"] == "FAILED"
    assert failed["failure_reason"] == "Insufficient funds"

    approved = {"event_type": "CHECKOUT.ORDER.APPROVED", "resource": {"id": "ORDER-1"}}
    assert await deliver(client, approved) == "applied"
    retried = await fetch(client, "payments", payment["reference"])
    assert retried["status"] == "PENDING"
    assert retried["retry_count"] == 1
    assert retried["failure_reason"] is None

    assert await deliver(client, capture_event("PAYMENT.CAPTURE.COMPLETED")) == "applied"
    assert (await fetch(client, "bookings", booking["reference"]))["status"] == "CONFIRMED"


@pytest.mark.asyncio
async def test_retry_budget_is_bounded(client):
    booking = await book(client)
    payment = await register(client, booking)
    denied = {"event_type": "CHECKOUT.ORDER.CANCELLED", "resource": {"id": "ORDER-1"}}
    approved = {"event_type": "CHECKOUT.ORDER.APPROVED", "resource": {"id": "ORDER-1"}}

    for _ in range(3):
        assert await deliver(client, denied) == "applied"
        assert await deliver(client, approved) == "applied"

    assert await deliver(client, denied) == "applied"
    assert await deliver(client, approved) == "stale"

    stored = await fetch(client, "payments", payment["reference"])
    assert stored["status"] == "FAILED"
    assert stored["retry_count"] == 3


@pytest.mark.asyncio
async def test_denial_after_completion_is_stale_but_reversal_applies(client):
    booking = await book(client)
    payment = await register(client, booking)
    await deliver(client, capture_event("PAYMENT.CAPTURE.COMPLETED"))

    assert await deliver(client, capture_event("PAYMENT.CAPTURE.DENIED")) == "stale"
    assert (await fetch(client, "payments", payment["reference"]))["status"] == "COMPLETED"

    assert await deliver(client, capture_event("PAYMENT.CAPTURE.REVERSED")) == "applied"
    assert (await fetch(client, "payments", payment["reference"]))["status"] == "FAILED"


@pytest.mark.asyncio
async def test_capture_for_cancelled_booking_does_not_confirm(client):
    booking = await book(client)
    payment = await register(client, booking)
    await client.post(f"/api/v1/bookings/{booking['reference']}/cancel")

    assert await deliver(client, capture_event("PAYMENT.CAPTURE.COMPLETED")) == "applied"

    assert (await fetch(client, "payments", payment["reference"]))["status"] == "COMPLETED"
    assert (await fetch(client, "bookings", booking["reference"]))["status"] == "CANCELLED"


@pytest.mark.asyncio
async def test_capture_id_mismatch_is_stale(client):
    booking = await book(client)
    payment = await register(client, booking)
    await deliver(client, capture_event("PAYMENT.CAPTURE.COMPLETED", capture_id="CAP-1"))

    outcome = await deliver(client, capture_event("PAYMENT.CAPTURE.COMPLETED", capture_id="CAP-OTHER"))

    assert outcome == "stale"
    assert (await fetch(client, "payments", payment["reference"]))["provider_capture_id"] == "CAP-1"


@pytest.mark.asyncio
async def test_unknown_payment_is_acknowledged(client):
    outcome = await deliver(client, capture_event("PAYMENT.CAPTURE.COMPLETED", order_id="ORDER-UNKNOWN"))
    assert outcome == "not_found"


@pytest.mark.asyncio
async def test_unhandled_event_type_is_acknowledged(client):
    outcome = await deliver(client, {"event_type": "CUSTOMER.DISPUTE.CREATED", "resource": {"id": "D-1"}})
    assert outcome == "unhandled"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"event_type": "PAYMENT.CAPTURE.COMPLETED"},
        {"resource": {"id": "CAP-1"}},
        {"event_type": "", "resource": {}},
        {"event_type": "PAYMENT.CAPTURE.COMPLETED", "resource": {"amount": {"value": "lots"}}},
    ],
)
async def test_malformed_payload_is_rejected(client, payload):
    response = await client.post("/api/v1/webhooks/payments", json=payload)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "malformed_webhook"


async def wait_for_payment_status(ctx, reference: str, status: str, timeout: float = 3.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        async with ctx.session_factory() as db:
            payment = await payment_service.get_payment(db, reference)
        if payment.status == status:
            return payment
        if loop.time() > deadline:
            raise AssertionError(f"payment stayed {payment.status}, expected {status}")
        await asyncio.sleep(0.02)


@pytest.mark.asyncio
async def test_internal_failure_is_deferred_and_replayed(client, ctx, monkeypatch):
    booking = await book(client)
    payment = await register(client, booking)

    real_find_payment = payment_service.find_payment
    calls = {"n": 0}

    async def flaky_find_payment(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise OperationalError("SELECT payments", {}, Exception("database is locked"))
        return await real_find_payment(*args, **kwargs)

    monkeypatch.setattr(payment_service, "find_payment", flaky_find_payment)

    outcome = await deliver(client, capture_event("PAYMENT.CAPTURE.COMPLETED", event_id="WH-1"))
    assert outcome == "deferred"

    await wait_for_payment_status(ctx, payment["reference"], "COMPLETED")
    assert calls["n"] == 2
    assert (await fetch(client, "bookings", booking["reference"]))["status"] == "CONFIRMED"


@pytest.mark.asyncio
async def test_exhausted_retries_report_failed(client, ctx, db_session, monkeypatch):
    booking = await book(client)
    payment = await register(client, booking)

    async def broken_find_payment(*args, **kwargs):
        raise OperationalError("SELECT payments", {}, Exception("disk I/O error"))

    monkeypatch.setattr(payment_service, "find_payment", broken_find_payment)

    result = await process_event(
        db_session,
        ctx,
        capture_event("PAYMENT.CAPTURE.COMPLETED"),
        attempt=ctx.settings.WEBHOOK_MAX_RETRIES,
    )

    assert result.outcome == "failed"
    monkeypatch.undo()
    assert (await fetch(client, "payments", payment["reference"]))["status"] == "PENDING"
