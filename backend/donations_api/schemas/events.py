"""Normalised provider events.

Every provider payload (webhook or client confirmation) is parsed into one of
these shapes at the boundary; the reconciler never looks at raw provider fields.
"""

from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BaseModel, Field


class _ProviderEventBase(BaseModel):
    model_config = {"frozen": True}

    provider_name: str
    event_type: str
    provider_payment_id: str = Field(..., min_length=1)
    event_id: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    donation_id: str | None = None
    channel: Literal["webhook", "client"] = "webhook"

    @property
    def dedup_key(self) -> str:
        if self.event_id:
            return self.event_id
        return f"{self.provider_payment_id}:{self.outcome}"  # type: ignore[attr-defined]


class PaymentSucceeded(_ProviderEventBase):
    outcome: Literal["succeeded"] = "succeeded"


class PaymentFailed(_ProviderEventBase):
    outcome: Literal["failed"] = "failed"
    reason: str = "payment failed"


class SubscriptionCancelled(_ProviderEventBase):
    outcome: Literal["subscription_cancelled"] = "subscription_cancelled"


NormalizedEvent = Annotated[
    PaymentSucceeded | PaymentFailed | SubscriptionCancelled,
    Field(discriminator="outcome"),
]
