"""Fee estimate schemas."""

from decimal import Decimal

from pydantic import BaseModel


class FeeEstimateResponse(BaseModel):
    amount: Decimal
    currency: str
    payment_method: str
    cover_fees: bool
    processing_fee: Decimal
    total_with_fees: Decimal
    donation_amount: Decimal
    fee_description: str
