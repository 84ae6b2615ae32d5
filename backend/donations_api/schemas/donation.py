"""Donation request/response schemas."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, EmailStr, Field, field_validator


class DonationCreateRequest(BaseModel):
    type: str = Field(..., min_length=1, max_length=20)
    amount: Decimal = Field(..., decimal_places=2)
    currency: str = Field("AUD", min_length=3, max_length=3)
    frequency: str = Field("one-off", max_length=20)
    payment_method: str = Field("stripe", max_length=30)
    case_id: uuid.UUID | None = None
    destination_project: str | None = Field(None, max_length=255)
    donor_name: str | None = Field(None, max_length=255)
    donor_email: EmailStr | None = None
    cover_fees: bool = True

    @field_validator("currency", "type", "frequency", "payment_method", mode="before")
    @classmethod
    def strip_value(cls, v: object) -> object:
        return v.strip() if isinstance(v, str) else v


class DonationResponse(BaseModel):
    id: uuid.UUID
    type: str
    amount: Decimal
    currency: str
    frequency: str
    payment_method: str
    status: str
    case_id: uuid.UUID | None
    destination_project: str | None
    donor_name: str | None
    provider_payment_id: str | None
    provider_subscription_id: str | None
    subscription_status: str | None
    cover_fees: bool
    processing_fee: Decimal
    charge_amount: Decimal | None
    failure_reason: str | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime | None

    model_config = {"from_attributes": True}


class DonationListItem(BaseModel):
    id: uuid.UUID
    type: str
    amount: Decimal
    currency: str
    case_amount: Decimal | None
    frequency: str
    payment_method: str
    status: str
    donor_name: str | None
    created_at: datetime
    completed_at: datetime | None

    model_config = {"from_attributes": True}
