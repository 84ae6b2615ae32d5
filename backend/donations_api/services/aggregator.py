"""Case totals, recomputed from the donation records they summarise.

amount_collected is always rebuilt from source rows rather than incremented,
so running it twice, or concurrently with a completion, cannot double-count.
Confirmed donations whose conversion into the case currency failed at
completion time are converted again here when a CurrencyService is supplied.
"""

import logging
import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from donations_api.core.exceptions import NotFoundError, ProviderUnavailableError, ValidationError
from donations_api.core.locks import KeyedLock
from donations_api.models.case import Case
from donations_api.models.donation import CONFIRMED_STATUSES, Donation
from donations_api.services.currency import CurrencyService

logger = logging.getLogger(__name__)

case_locks = KeyedLock()


async def collected_total(db: AsyncSession, case_id: uuid.UUID) -> Decimal:
    """Sum of confirmed donations for a case, in the case's currency."""
    result = await db.execute(
        select(func.coalesce(func.sum(Donation.case_amount), 0)).where(
            Donation.case_id == case_id,
            Donation.status.in_(CONFIRMED_STATUSES),
            Donation.case_amount.is_not(None),
        )
    )
    return Decimal(str(result.scalar_one())).quantize(Decimal("0.01"))


async def _convert_missing(db: AsyncSession, case: Case, currency: CurrencyService) -> int:
    """Fill in case_amount for confirmed donations that lack it; returns how many remain."""
    result = await db.execute(
        select(Donation).where(
            Donation.case_id == case.id,
            Donation.status.in_(CONFIRMED_STATUSES),
            Donation.case_amount.is_(None),
        )
    )
    remaining = 0
    for donation in result.scalars().all():
        try:
            donation.case_amount = await currency.convert(
                donation.amount, donation.currency, case.currency
            )
        except (ProviderUnavailableError, ValidationError) as exc:
            remaining += 1
            logger.warning(
                "Donation %s still has no %s amount: %s", donation.id, case.currency, exc.detail
            )
            continue
        logger.info(
            "Converted donation %s: %s %s -> %s %s",
            donation.id,
            donation.currency,
            donation.amount,
            case.currency,
            donation.case_amount,
        )
    await db.flush()
    return remaining


async def recompute_collected(
    db: AsyncSession,
    case_id: uuid.UUID,
    currency: CurrencyService | None = None,
) -> Case:
    """Rewrite Case.amount_collected from its confirmed donations."""
    async with case_locks.hold(case_id):
        result = await db.execute(
            select(Case)
            .where(Case.id == case_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        case = result.scalar_one_or_none()
        if case is None:
            raise NotFoundError(f"Case {case_id} not found")

        if currency is not None:
            unconverted = await _convert_missing(db, case, currency)
        else:
            missing = await db.execute(
                select(func.count(Donation.id)).where(
                    Donation.case_id == case_id,
                    Donation.status.in_(CONFIRMED_STATUSES),
                    Donation.case_amount.is_(None),
                )
            )
            unconverted = missing.scalar_one()
        if unconverted:
            logger.error(
                "Case %s has %d confirmed donation(s) without a converted amount; "
                "they are excluded until reconciled",
                case_id,
                unconverted,
            )

        total = await collected_total(db, case_id)
        if case.amount_collected != total:
            logger.info("Case %s collected %s -> %s", case_id, case.amount_collected, total)
            case.amount_collected = total
            case.updated_at = datetime.now(UTC)
        await db.flush()

    return case


async def recompute_all(
    db: AsyncSession,
    currency: CurrencyService | None = None,
) -> list[Case]:
    """Periodic reconciliation pass over every case."""
    result = await db.execute(select(Case.id).order_by(Case.created_at))
    return [
        await recompute_collected(db, case_id, currency)
        for case_id in result.scalars().all()
    ]
