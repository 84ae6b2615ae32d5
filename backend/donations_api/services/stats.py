"""Public donation counters, derived from the ledger on each request."""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from donations_api.models.donation import (
    CONFIRMED_STATUSES,
    STATUS_ACTIVE_SUBSCRIPTION,
    Donation,
)

RECENT_WINDOW = timedelta(days=30)


@dataclass(frozen=True)
class DonationStats:
    confirmed_donations: int
    donors: int
    active_subscriptions: int
    donations_last_30_days: int
    totals: dict[str, Decimal]
    last_updated: datetime


async def donation_stats(db: AsyncSession, now: datetime | None = None) -> DonationStats:
    """Counts over confirmed donations; totals are per currency, never converted."""
    now = now or datetime.now(UTC)
    confirmed = Donation.status.in_(CONFIRMED_STATUSES)

    count = await db.execute(select(func.count(Donation.id)).where(confirmed))
    donors = await db.execute(
        select(func.count(func.distinct(func.lower(Donation.donor_email)))).where(
            confirmed, Donation.donor_email.is_not(None)
        )
    )
    subscriptions = await db.execute(
        select(func.count(Donation.id)).where(
            Donation.status == STATUS_ACTIVE_SUBSCRIPTION,
            Donation.subscription_status == "active",
        )
    )
    recent = await db.execute(
        select(func.count(Donation.id)).where(
            confirmed, Donation.completed_at >= now - RECENT_WINDOW
        )
    )
    totals = await db.execute(
        select(Donation.currency, func.sum(Donation.amount))
        .where(confirmed)
        .group_by(Donation.currency)
        .order_by(Donation.currency)
    )

    return DonationStats(
        confirmed_donations=count.scalar_one(),
        donors=donors.scalar_one(),
        active_subscriptions=subscriptions.scalar_one(),
        donations_last_30_days=recent.scalar_one(),
        totals={
            currency: Decimal(str(amount)).quantize(Decimal("0.01"))
            for currency, amount in totals.all()
        },
        last_updated=now,
    )
