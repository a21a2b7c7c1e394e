"""
Lifecycle messages published on the in-process event dispatcher.

Plain frozen dataclasses; consumers subscribe by type.
"""

from dataclasses import dataclass, field, asdict
from datetime import date
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class BookingCreated:
    booking_reference: str
    property_id: int
    guest_id: int
    check_in: date
    check_out: date
    total_price: Decimal

    def to_dict(self) -> dict:
        data = asdict(self)
        data["check_in"] = self.check_in.isoformat()
        data["check_out"] = self.check_out.isoformat()
        data["total_price"] = str(self.total_price)
        return data


@dataclass(frozen=True)
class BookingStatusChanged:
    booking_reference: str
    property_id: int
    previous_status: str
    status: str
    actor: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class WebhookRetryRequested:
    """A provider event whose processing failed internally and must be replayed."""

    payload: dict = field(hash=False)
    attempt: int = 1
