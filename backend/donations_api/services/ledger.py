"""Donation ledger: lifecycle state machine for donation records.

pending -> awaiting_confirmation -> completed | active_subscription | failed

Confirmation can arrive over two racing channels (provider webhook and the
client callback) and webhooks can be redelivered, so every transition is a
compare-and-swap UPDATE guarded by the allowed source states, and callers in
this process also serialise on a per-donation lock.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from donations_api.core.config import settings
from donations_api.core.exceptions import ConflictError, NotFoundError, ValidationError
from donations_api.core.locks import KeyedLock
from donations_api.models.case import Case
from donations_api.models.donation import (
    CONFIRMED_STATUSES,
    DONATION_TYPES,
    FREQUENCIES,
    PAYMENT_METHODS,
    STATUS_ACTIVE_SUBSCRIPTION,
    STATUS_AWAITING,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    Donation,
)
from donations_api.schemas.donation import DonationCreateRequest

logger = logging.getLogger(__name__)

# Source states from which each target state may be reached.
TRANSITIONS: dict[str, tuple[str, ...]] = {
    STATUS_AWAITING: (STATUS_PENDING,),
    STATUS_COMPLETED: (STATUS_PENDING, STATUS_AWAITING),
    STATUS_ACTIVE_SUBSCRIPTION: (STATUS_PENDING, STATUS_AWAITING),
    STATUS_FAILED: (STATUS_PENDING, STATUS_AWAITING),
}

donation_locks = KeyedLock()


@dataclass
class TransitionResult:
    donation: Donation
    applied: bool


async def _load(db: AsyncSession, donation_id: uuid.UUID, *, refresh: bool = False) -> Donation:
    stmt = select(Donation).where(Donation.id == donation_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await db.execute(stmt)
    donation = result.scalar_one_or_none()
    if donation is None:
        raise NotFoundError(f"Donation {donation_id} not found")
    return donation


async def _swap_status(
    db: AsyncSession,
    donation_id: uuid.UUID,
    target: str,
    **values: object,
) -> bool:
    """Move to target only if the row is still in an allowed source state."""
    result = await db.execute(
        update(Donation)
        .where(Donation.id == donation_id, Donation.status.in_(TRANSITIONS[target]))
        .values(status=target, updated_at=datetime.now(UTC), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _validate_input(data: DonationCreateRequest) -> None:
    if data.amount is None or data.amount <= 0:
        raise ValidationError("Amount must be greater than zero")
    if data.type not in DONATION_TYPES:
        raise ValidationError(
            f"Invalid donation type '{data.type}'; expected one of {', '.join(DONATION_TYPES)}"
        )
    if data.frequency not in FREQUENCIES:
        raise ValidationError(
            f"Invalid frequency '{data.frequency}'; expected one of {', '.join(FREQUENCIES)}"
        )
    if data.payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method '{data.payment_method}'; "
            f"expected one of {', '.join(PAYMENT_METHODS)}"
        )
    if data.currency.upper() not in settings.supported_currencies:
        raise ValidationError(f"Unsupported currency '{data.currency}'")


async def create_donation(db: AsyncSession, data: DonationCreateRequest) -> Donation:
    """Record a donation intent in the pending state."""
    _validate_input(data)

    if data.case_id is not None:
        case = await db.get(Case, data.case_id)
        if case is None:
            raise NotFoundError(f"Case {data.case_id} not found")
        if not case.active:
            raise ValidationError("Case is no longer accepting donations")
        if data.frequency != "one-off" and not case.recurring_allowed:
            raise ValidationError("Case does not accept recurring donations")

    donation = Donation(
        type=data.type,
        amount=data.amount,
        currency=data.currency.upper(),
        frequency=data.frequency,
        payment_method=data.payment_method,
        status=STATUS_PENDING,
        case_id=data.case_id,
        destination_project=data.destination_project,
        donor_name=data.donor_name,
        donor_email=str(data.donor_email) if data.donor_email else None,
        cover_fees=data.cover_fees,
        processing_fee=Decimal("0.00"),
    )
    db.add(donation)
    await db.flush()
    await db.refresh(donation)

    logger.info(
        "Created donation %s: %s %s %s via %s",
        donation.id,
        donation.type,
        donation.amount,
        donation.currency,
        donation.payment_method,
    )
    return donation


async def get_donation(db: AsyncSession, donation_id: uuid.UUID) -> Donation:
    return await _load(db, donation_id)


async def get_by_provider_id(db: AsyncSession, provider_id: str) -> Donation | None:
    """Find a donation by its provider payment id or subscription id."""
    result = await db.execute(
        select(Donation).where(
            or_(
                Donation.provider_payment_id == provider_id,
                Donation.provider_subscription_id == provider_id,
            )
        )
    )
    return result.scalars().first()


async def list_by_case(
    db: AsyncSession,
    case_id: uuid.UUID,
    status: str | None = None,
) -> list[Donation]:
    stmt = select(Donation).where(Donation.case_id == case_id).order_by(Donation.created_at)
    if status:
        stmt = stmt.where(Donation.status == status)
    result = await db.execute(stmt)
    return list(result.scalars().all())


def _matches_provider(donation: Donation, provider_id: str) -> bool:
    return provider_id in (donation.provider_payment_id, donation.provider_subscription_id)


async def attach_provider_session(
    db: AsyncSession,
    donation_id: uuid.UUID,
    *,
    provider_payment_id: str | None = None,
    provider_subscription_id: str | None = None,
    processing_fee: Decimal | None = None,
    charge_amount: Decimal | None = None,
) -> TransitionResult:
    """Bind provider ids to a donation and move it to awaiting_confirmation.

    Binding to a different id than the one already attached is refused so a
    session cannot be hijacked onto someone else's donation.
    """
    if not provider_payment_id and not provider_subscription_id:
        raise ValidationError("A provider payment id or subscription id is required")

    async with donation_locks.hold(donation_id):
        donation = await _load(db, donation_id)

        if (
            provider_payment_id
            and donation.provider_payment_id
            and donation.provider_payment_id != provider_payment_id
        ) or (
            provider_subscription_id
            and donation.provider_subscription_id
            and donation.provider_subscription_id != provider_subscription_id
        ):
            raise ConflictError(
                f"Donation {donation_id} is already attached to a different provider session"
            )

        for provider_id in (provider_payment_id, provider_subscription_id):
            if not provider_id:
                continue
            owner = await get_by_provider_id(db, provider_id)
            if owner is not None and owner.id != donation_id:
                raise ConflictError(
                    f"Provider session {provider_id} belongs to another donation"
                )

        if donation.status != STATUS_PENDING:
            same_session = (
                not provider_payment_id or donation.provider_payment_id == provider_payment_id
            ) and (
                not provider_subscription_id
                or donation.provider_subscription_id == provider_subscription_id
            )
            if donation.status == STATUS_AWAITING and same_session:
                return TransitionResult(donation, applied=False)
            raise ConflictError(
                f"Cannot attach a provider session to donation {donation_id} "
                f"in state '{donation.status}'"
            )

        values: dict[str, object] = {}
        if provider_payment_id:
            values["provider_payment_id"] = provider_payment_id
        if provider_subscription_id:
            values["provider_subscription_id"] = provider_subscription_id
        if processing_fee is not None:
            values["processing_fee"] = processing_fee
        if charge_amount is not None:
            values["charge_amount"] = charge_amount

        applied = await _swap_status(db, donation_id, STATUS_AWAITING, **values)
        donation = await _load(db, donation_id, refresh=True)
        if not applied:
            raise ConflictError(
                f"Donation {donation_id} changed state to '{donation.status}' during attach"
            )

    logger.info(
        "Attached provider session to donation %s (payment=%s subscription=%s)",
        donation_id,
        provider_payment_id,
        provider_subscription_id,
    )
    return TransitionResult(donation, applied=True)


async def mark_completed(
    db: AsyncSession,
    donation_id: uuid.UUID,
    provider_payment_id: str,
    *,
    case_amount: Decimal | None = None,
) -> TransitionResult:
    """Record a successful payment; idempotent for the same provider id.

    One-off donations end in completed, recurring ones in active_subscription
    (later charges are billed by the provider). A success arriving after a
    terminal failure is a ConflictError rather than being applied.
    """
    async with donation_locks.hold(donation_id):
        donation = await _load(db, donation_id)

        bound = donation.provider_payment_id or donation.provider_subscription_id
        if bound and not _matches_provider(donation, provider_payment_id):
            raise ConflictError(
                f"Donation {donation_id} is bound to a different provider payment"
            )

        if donation.status in CONFIRMED_STATUSES:
            return TransitionResult(donation, applied=False)
        if donation.status == STATUS_FAILED:
            raise ConflictError(
                f"Donation {donation_id} already failed; refusing late success "
                f"for {provider_payment_id}"
            )

        target = STATUS_ACTIVE_SUBSCRIPTION if donation.is_recurring else STATUS_COMPLETED
        values: dict[str, object] = {"completed_at": datetime.now(UTC)}
        if not bound:
            values["provider_payment_id"] = provider_payment_id
        if case_amount is not None:
            values["case_amount"] = case_amount
        elif donation.case_id is not None:
            case = await db.get(Case, donation.case_id)
            if case is not None and case.currency == donation.currency:
                values["case_amount"] = donation.amount
        if target == STATUS_ACTIVE_SUBSCRIPTION:
            values["subscription_status"] = "active"

        applied = await _swap_status(db, donation_id, target, **values)
        donation = await _load(db, donation_id, refresh=True)
        if not applied:
            # Lost the race to another writer outside this process.
            if donation.status in CONFIRMED_STATUSES:
                return TransitionResult(donation, applied=False)
            raise ConflictError(
                f"Donation {donation_id} moved to '{donation.status}' before completion"
            )

    logger.info("Donation %s is now %s (%s)", donation_id, target, provider_payment_id)
    return TransitionResult(donation, applied=True)


async def mark_failed(
    db: AsyncSession,
    donation_id: uuid.UUID,
    reason: str,
) -> TransitionResult:
    """Record a failed payment. Never reverts a confirmed donation."""
    async with donation_locks.hold(donation_id):
        donation = await _load(db, donation_id)

        if donation.status == STATUS_FAILED:
            return TransitionResult(donation, applied=False)
        if donation.status in CONFIRMED_STATUSES:
            raise ConflictError(
                f"Donation {donation_id} is already {donation.status}; ignoring failure"
            )

        applied = await _swap_status(db, donation_id, STATUS_FAILED, failure_reason=reason)
        donation = await _load(db, donation_id, refresh=True)
        if not applied:
            if donation.status == STATUS_FAILED:
                return TransitionResult(donation, applied=False)
            raise ConflictError(
                f"Donation {donation_id} is already {donation.status}; ignoring failure"
            )

    logger.info("Donation %s failed: %s", donation_id, reason)
    return TransitionResult(donation, applied=True)


async def mark_subscription_status(
    db: AsyncSession,
    donation_id: uuid.UUID,
    subscription_status: str,
) -> TransitionResult:
    """Track the provider's subscription state; the lifecycle status is untouched."""
    async with donation_locks.hold(donation_id):
        donation = await _load(db, donation_id)
        if donation.subscription_status == subscription_status:
            return TransitionResult(donation, applied=False)

        await db.execute(
            update(Donation)
            .where(Donation.id == donation_id)
            .values(subscription_status=subscription_status, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        donation = await _load(db, donation_id, refresh=True)

    logger.info("Donation %s subscription is now %s", donation_id, subscription_status)
    return TransitionResult(donation, applied=True)
