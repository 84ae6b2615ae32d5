"""Exchange rates and geo-IP currency detection."""

from fastapi import APIRouter, Depends, Request

from donations_api.core.dependencies import get_currency_service
from donations_api.schemas.currency import CurrencyByIpResponse, ExchangeRatesResponse
from donations_api.services.currency import CurrencyService

router = APIRouter()


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.get("/rates", response_model=ExchangeRatesResponse)
async def get_exchange_rates(
    currency: CurrencyService = Depends(get_currency_service),
) -> ExchangeRatesResponse:
    base, rates = await currency.get_rates()
    return ExchangeRatesResponse(base=base, rates=rates)


@router.get("/by-ip", response_model=CurrencyByIpResponse)
async def get_currency_by_ip(
    request: Request,
    currency: CurrencyService = Depends(get_currency_service),
) -> CurrencyByIpResponse:
    return CurrencyByIpResponse(currency=await currency.currency_for_ip(_client_ip(request)))
