"""Exchange-rate schemas."""

from decimal import Decimal

from pydantic import BaseModel


class ExchangeRatesResponse(BaseModel):
    base: str
    rates: dict[str, Decimal]


class CurrencyByIpResponse(BaseModel):
    currency: str
