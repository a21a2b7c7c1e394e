"""
Pricing calculator.

    base  = nightly_rate * nights
    total = base + cleaning_fee + service_fee + tax - discount

The security deposit is carried in the breakdown for display and payment
purposes but is held separately, so it never contributes to the total.
All money is Decimal, quantized to cents with ROUND_HALF_UP.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, Union

from rental_booking.core.exceptions import ValidationError

CENTS = Decimal("0.01")

Money = Union[Decimal, int, str]


def to_money(value: Optional[Money], field: str) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} is not a valid amount", field=field)
    if not amount.is_finite():
        raise ValidationError(f"{field} is not a valid amount", field=field)
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PriceBreakdown:
    nightly_rate: Decimal
    nights: int
    base_price: Decimal
    cleaning_fee: Optional[Decimal]
    service_fee: Optional[Decimal]
    security_deposit: Optional[Decimal]
    tax: Optional[Decimal]
    discount: Optional[Decimal]
    total_price: Decimal

    @staticmethod
    def derive_total(
        base_price: Decimal,
        cleaning_fee: Optional[Decimal] = None,
        service_fee: Optional[Decimal] = None,
        tax: Optional[Decimal] = None,
        discount: Optional[Decimal] = None,
    ) -> Decimal:
        total = base_price
        for component in (cleaning_fee, service_fee, tax):
            if component is not None:
                total += component
        if discount is not None:
            total -= discount
        return total.quantize(CENTS, rounding=ROUND_HALF_UP)

    def is_consistent(self) -> bool:
        return self.total_price == self.derive_total(
            self.base_price, self.cleaning_fee, self.service_fee, self.tax, self.discount
        )

    def as_columns(self) -> dict:
        """Column values for a Booking row."""
        return {
            "base_price": self.base_price,
            "cleaning_fee": self.cleaning_fee,
            "service_fee": self.service_fee,
            "security_deposit": self.security_deposit,
            "tax": self.tax,
            "discount": self.discount,
            "total_price": self.total_price,
        }


def calculate_price(
    nightly_rate: Money,
    nights: int,
    cleaning_fee: Optional[Money] = None,
    service_fee: Optional[Money] = None,
    security_deposit: Optional[Money] = None,
    tax: Optional[Money] = None,
    discount: Optional[Money] = None,
) -> PriceBreakdown:
    """Compute the price breakdown for a stay. Raises ValidationError on bad input."""
    if not isinstance(nights, int) or isinstance(nights, bool) or nights <= 0:
        raise ValidationError("Night count must be a positive integer", field="nights")

    rate = to_money(nightly_rate, "nightly_rate")
    if rate is None or rate <= 0:
        raise ValidationError("Nightly rate must be greater than zero", field="nightly_rate")

    fees = {}
    for field, value in (
        ("cleaning_fee", cleaning_fee),
        ("service_fee", service_fee),
        ("security_deposit", security_deposit),
        ("tax", tax),
    ):
        amount = to_money(value, field)
        if amount is not None and amount < 0:
            raise ValidationError(f"{field} cannot be negative", field=field)
        fees[field] = amount

    base_price = (rate * nights).quantize(CENTS, rounding=ROUND_HALF_UP)

    discount_amount = to_money(discount, "discount")
    if discount_amount is not None:
        if discount_amount < 0:
            raise ValidationError("Discount cannot be negative", field="discount")
        if discount_amount > base_price:
            raise ValidationError("Discount cannot exceed the base price", field="discount")

    total = PriceBreakdown.derive_total(
        base_price, fees["cleaning_fee"], fees["service_fee"], fees["tax"], discount_amount
    )
    if total <= 0:
        raise ValidationError("Total price must be greater than zero", field="total_price")

    return PriceBreakdown(
        nightly_rate=rate,
        nights=nights,
        base_price=base_price,
        cleaning_fee=fees["cleaning_fee"],
        service_fee=fees["service_fee"],
        security_deposit=fees["security_deposit"],
        tax=fees["tax"],
        discount=discount_amount,
        total_price=total,
    )
