"""
Booking and payment lifecycle table tests.
"""

import pytest

from rental_booking.core.exceptions import StateError
from rental_booking.domain.state_machine import (
    BOOKING_TRANSITIONS,
    assert_transition,
    can_be_cancelled,
    can_transition,
    can_transition_payment,
    is_active,
    is_payment_retry,
    is_refundable,
    is_terminal,
    may_leave_active_set,
)
from rental_booking.domain.statuses import BookingStatus, PaymentStatus

S = BookingStatus

LEGAL = {
    (S.PENDING, S.CONFIRMED),
    (S.PENDING, S.CANCELLED),
    (S.CONFIRMED, S.CHECKED_IN),
    (S.CONFIRMED, S.CANCELLED),
    (S.CONFIRMED, S.NO_SHOW),
    (S.CHECKED_IN, S.CHECKED_OUT),
    (S.CHECKED_IN, S.NO_SHOW),
    (S.CHECKED_OUT, S.COMPLETED),
}


@pytest.mark.parametrize("current", list(S))
@pytest.mark.parametrize("target", list(S))
def test_transition_table(current, target):
    assert can_transition(current, target) == ((current, target) in LEGAL)


def test_every_status_has_an_entry():
    assert set(BOOKING_TRANSITIONS) == set(S)


def test_assert_transition_raises_with_both_states():
    with pytest.raises(StateError) as exc_info:
        assert_transition(S.COMPLETED, S.CHECKED_IN)

    assert exc_info.value.current == "COMPLETED"
    assert exc_info.value.target == "CHECKED_IN"
    assert exc_info.value.code == "invalid_transition"


def test_assert_transition_accepts_strings():
    assert assert_transition("PENDING", "CONFIRMED") == S.CONFIRMED


def test_active_and_terminal_sets():
    assert {s for s in S if is_active(s)} == {S.PENDING, S.CONFIRMED, S.CHECKED_IN}
    assert {s for s in S if is_terminal(s)} == {S.COMPLETED, S.CANCELLED, S.NO_SHOW}


def test_cancellable_and_refundable():
    assert can_be_cancelled(S.PENDING)
    assert can_be_cancelled(S.CONFIRMED)
    assert not can_be_cancelled(S.CHECKED_IN)
    assert is_refundable(S.CANCELLED)
    assert is_refundable(S.NO_SHOW)
    assert not is_refundable(S.COMPLETED)


def test_transitions_that_free_dates_need_property_lock():
    assert may_leave_active_set(S.CANCELLED)
    assert may_leave_active_set(S.CHECKED_OUT)
    assert not may_leave_active_set(S.CONFIRMED)
    assert not may_leave_active_set(S.CHECKED_IN)


def test_payment_refund_allowed_from_pending_and_completed():
    assert can_transition_payment(PaymentStatus.PENDING, PaymentStatus.REFUNDED)
    assert can_transition_payment(PaymentStatus.COMPLETED, PaymentStatus.REFUNDED)


def test_payment_refunded_is_terminal():
    assert not can_transition_payment(PaymentStatus.REFUNDED, PaymentStatus.COMPLETED)
    assert not can_transition_payment("REFUNDED", "PENDING")


def test_payment_retry_detection():
    assert is_payment_retry(PaymentStatus.FAILED, PaymentStatus.COMPLETED)
    assert is_payment_retry(PaymentStatus.FAILED, PaymentStatus.PENDING)
    assert not is_payment_retry(PaymentStatus.FAILED, PaymentStatus.REFUNDED)
    assert not is_payment_retry(PaymentStatus.PENDING, PaymentStatus.COMPLETED)
