"""Payment session and confirmation schemas."""

import uuid
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field


class PaymentSessionResponse(BaseModel):
    donation_id: uuid.UUID
    payment_method: str
    status: str
    provider_payment_id: str | None = None
    provider_subscription_id: str | None = None
    client_secret: str | None = None
    order_id: str | None = None
    approval_url: str | None = None
    instructions: dict[str, str] | None = None
    processing_fee: Decimal
    charge_amount: Decimal
    currency: str


class ClientConfirmationRequest(BaseModel):
    provider_payment_id: str = Field(..., min_length=1, max_length=255)


class TransferConfirmationRequest(BaseModel):
    outcome: Literal["succeeded", "failed"] = "succeeded"
    reason: str | None = Field(None, max_length=500)


class ReconcileResponse(BaseModel):
    donation_id: uuid.UUID | None = None
    result: str
    status: str | None = None


class WebhookAck(BaseModel):
    received: bool = True
    result: str
