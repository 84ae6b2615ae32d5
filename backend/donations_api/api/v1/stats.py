"""Donation counters for the public site."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from donations_api.core.dependencies import get_db
from donations_api.schemas.stats import CurrencyTotal, DonationStatsResponse
from donations_api.services.stats import donation_stats

router = APIRouter()


@router.get("", response_model=DonationStatsResponse)
async def get_stats(db: AsyncSession = Depends(get_db)) -> DonationStatsResponse:
    stats = await donation_stats(db)
    return DonationStatsResponse(
        confirmed_donations=stats.confirmed_donations,
        donors=stats.donors,
        active_subscriptions=stats.active_subscriptions,
        donations_last_30_days=stats.donations_last_30_days,
        totals=[CurrencyTotal(currency=c, amount=a) for c, a in stats.totals.items()],
        last_updated=stats.last_updated,
    )
