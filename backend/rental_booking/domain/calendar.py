"""Half-open date range arithmetic shared by the availability index."""

from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Iterator

from rental_booking.core.exceptions import ValidationError


def ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """[a_start, a_end) and [b_start, b_end) share at least one night."""
    return a_start < b_end and b_start < a_end


def iter_nights(start: date, end: date) -> Iterator[date]:
    """Each night of [start, end). The check-out day is not a night."""
    current = start
    while current < end:
        yield current
        current += timedelta(days=1)


def nights_in_window(start: date, end: date, window_start: date, window_end: date) -> int:
    lo = max(start, window_start)
    hi = min(end, window_end)
    return max((hi - lo).days, 0)


def occupancy(stays: Iterable[tuple[date, date]], window_start: date, window_end: date) -> Decimal:
    """Booked nights / days in window, as a fraction rounded to 4 places."""
    days = (window_end - window_start).days
    if days <= 0:
        raise ValidationError("Occupancy window must span at least one day", field="end")
    booked = sum(nights_in_window(s, e, window_start, window_end) for s, e in stays)
    return (Decimal(booked) / Decimal(days)).quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)
