"""
Pydantic schemas for payments and inbound provider webhooks.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PaymentCreate(BaseModel):
    booking_reference: str = Field(..., min_length=1, max_length=20)
    order_id: str = Field(..., min_length=1, max_length=100)
    amount: Optional[Decimal] = None


class PaymentResponse(BaseModel):
    id: int
    reference: str
    booking_id: int
    amount: Decimal
    currency: str
    status: str
    provider_order_id: Optional[str]
    provider_capture_id: Optional[str]
    provider_transaction_id: Optional[str]
    provider_refund_id: Optional[str]
    captured_amount: Optional[Decimal]
    refund_amount: Optional[Decimal]
    is_partial_refund: bool
    failure_reason: Optional[str]
    retry_count: int
    max_retries: int
    processed_at: Optional[datetime]
    refunded_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class WebhookAmount(BaseModel):
    model_config = ConfigDict(extra="allow")

    currency_code: Optional[str] = None
    value: Optional[Decimal] = None


class WebhookDetails(BaseModel):
    model_config = ConfigDict(extra="allow")

    description: Optional[str] = None


class WebhookResource(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    custom_id: Optional[str] = None
    amount: Optional[WebhookAmount] = None
    details: Optional[WebhookDetails] = None


class WebhookPayload(BaseModel):
    """Provider notification, already signature-verified upstream."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    event_type: str = Field(..., min_length=1)
    create_time: Optional[datetime] = None
    resource: WebhookResource


class WebhookAck(BaseModel):
    received: bool = True
    outcome: str
    event_type: str
