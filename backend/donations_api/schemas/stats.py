"""Public donation counters."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class CurrencyTotal(BaseModel):
    currency: str
    amount: Decimal


class DonationStatsResponse(BaseModel):
    confirmed_donations: int
    donors: int
    active_subscriptions: int
    donations_last_30_days: int
    totals: list[CurrencyTotal]
    last_updated: datetime
