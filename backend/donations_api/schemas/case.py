"""Case request/response schemas.

amount_collected is read-only: create/update payloads never carry it.
"""

import re
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from donations_api.models.donation import DONATION_TYPES

CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")


class CaseCreate(BaseModel):
    model_config = {"extra": "forbid"}

    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    case_type: str = "zakaat"
    currency: str = Field("AUD", min_length=3, max_length=3)
    amount_required: Decimal = Field(..., gt=0, decimal_places=2)
    active: bool = True
    recurring_allowed: bool = False
    image_url: str | None = Field(None, max_length=500)

    @field_validator("case_type")
    @classmethod
    def validate_case_type(cls, v: str) -> str:
        if v not in DONATION_TYPES:
            raise ValueError(f"case_type must be one of {', '.join(DONATION_TYPES)}")
        return v

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        if not CURRENCY_PATTERN.match(v):
            raise ValueError("Currency must be a 3-letter uppercase ISO 4217 code")
        return v


class CaseUpdate(BaseModel):
    model_config = {"extra": "forbid"}

    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, min_length=1)
    case_type: str | None = None
    amount_required: Decimal | None = Field(None, gt=0, decimal_places=2)
    active: bool | None = None
    recurring_allowed: bool | None = None
    image_url: str | None = Field(None, max_length=500)

    @field_validator("case_type")
    @classmethod
    def validate_case_type(cls, v: str | None) -> str | None:
        if v is not None and v not in DONATION_TYPES:
            raise ValueError(f"case_type must be one of {', '.join(DONATION_TYPES)}")
        return v


class CaseResponse(BaseModel):
    id: uuid.UUID
    title: str
    description: str
    case_type: str
    currency: str
    amount_required: Decimal
    amount_collected: Decimal
    active: bool
    recurring_allowed: bool
    image_url: str | None
    created_at: datetime
    updated_at: datetime | None

    model_config = {"from_attributes": True}
