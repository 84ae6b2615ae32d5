"""Fee preview shown to donors before checkout."""

from decimal import Decimal

from fastapi import APIRouter, Query

from donations_api.schemas.fees import FeeEstimateResponse
from donations_api.services.fees import estimate_fee

router = APIRouter()


@router.get("/estimate", response_model=FeeEstimateResponse)
async def get_fee_estimate(
    amount: Decimal = Query(...),
    currency: str = Query("AUD", min_length=3, max_length=3),
    payment_method: str = Query("stripe"),
    cover_fees: bool = Query(True),
) -> FeeEstimateResponse:
    estimate = estimate_fee(amount, currency, payment_method, cover_fees=cover_fees)
    return FeeEstimateResponse(
        amount=amount,
        currency=currency.upper(),
        payment_method=payment_method,
        cover_fees=cover_fees,
        processing_fee=estimate.processing_fee,
        total_with_fees=estimate.total_with_fees,
        donation_amount=estimate.donation_amount,
        fee_description=estimate.fee_description,
    )
