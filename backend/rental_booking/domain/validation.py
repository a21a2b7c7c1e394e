"""
Reservation validator.

Pure checks run before any availability lookup or lock acquisition:

    1. check-in is not in the past
    2. check-in is strictly before check-out
    3. night count within the property's [min_nights, max_nights]
    4. 1 <= guests <= max_guests
    5. price bound (delegated to the pricing calculator)

The first failing check wins, so callers always get one actionable error.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from rental_booking.core.exceptions import ValidationError
from rental_booking.domain.pricing import PriceBreakdown, calculate_price


@dataclass(frozen=True)
class PropertyConstraints:
    """Read-only snapshot of a property's capacity and fee schedule."""

    property_id: int
    max_guests: int
    min_nights: int
    max_nights: int
    nightly_rate: Decimal
    cleaning_fee: Optional[Decimal] = None
    service_fee: Optional[Decimal] = None
    security_deposit: Optional[Decimal] = None
    tax: Optional[Decimal] = None
    instant_book: bool = False
    currency: str = "USD"


@dataclass(frozen=True)
class ValidatedStay:
    property_id: int
    check_in: date
    check_out: date
    guests: int
    nights: int
    price: PriceBreakdown


def validate_stay(
    constraints: PropertyConstraints,
    check_in: date,
    check_out: date,
    guests: int,
    today: Optional[date] = None,
    discount: Optional[Decimal] = None,
) -> ValidatedStay:
    today = today or date.today()

    if check_in < today:
        raise ValidationError("Check-in date cannot be in the past", field="check_in")

    if check_in >= check_out:
        raise ValidationError("Check-in must be before check-out", field="check_out")

    nights = (check_out - check_in).days
    if nights < constraints.min_nights:
        raise ValidationError(
            f"Minimum stay is {constraints.min_nights} nights", field="check_out"
        )
    if nights > constraints.max_nights:
        raise ValidationError(
            f"Maximum stay is {constraints.max_nights} nights", field="check_out"
        )

    if guests < 1:
        raise ValidationError("At least one guest is required", field="guests")
    if guests > constraints.max_guests:
        raise ValidationError(
            f"Property allows at most {constraints.max_guests} guests", field="guests"
        )

    price = calculate_price(
        constraints.nightly_rate,
        nights,
        cleaning_fee=constraints.cleaning_fee,
        service_fee=constraints.service_fee,
        security_deposit=constraints.security_deposit,
        tax=constraints.tax,
        discount=discount,
    )

    return ValidatedStay(
        property_id=constraints.property_id,
        check_in=check_in,
        check_out=check_out,
        guests=guests,
        nights=nights,
        price=price,
    )
