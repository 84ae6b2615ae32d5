"""Webhook and client-callback reconciliation.

Provider notifications are delivered at least once, out of order, and race
the donor's own confirmation callback. Every normalised event goes through
Reconciler.handle, which deduplicates it, applies at most one ledger
transition, commits, and only then fires best-effort side effects (case
totals, receipt email).
"""

import enum
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from donations_api.core.config import settings
from donations_api.core.exceptions import (
    ConflictError,
    ProviderUnavailableError,
    UnknownPaymentError,
    ValidationError,
)
from donations_api.core.locks import KeyedLock
from donations_api.models.case import Case
from donations_api.models.donation import CONFIRMED_STATUSES, Donation
from donations_api.models.provider_event import ProviderEvent
from donations_api.schemas.events import NormalizedEvent
from donations_api.services import aggregator, email, ledger
from donations_api.services.currency import CurrencyService
from donations_api.services.providers.bank_transfer import BankTransferProvider
from donations_api.services.providers.base import PaymentProvider
from donations_api.services.side_effects import SideEffectDispatcher

logger = logging.getLogger(__name__)

payment_locks = KeyedLock()


class ReconcileOutcome(str, enum.Enum):
    PROCESSED = "processed"
    NOOP = "noop"
    DUPLICATE = "duplicate"
    UNKNOWN_PAYMENT = "unknown_payment"
    CONFLICT = "conflict"
    PENDING = "pending"
    ERROR = "error"


@dataclass
class ReconcileResult:
    outcome: ReconcileOutcome
    donation_id: uuid.UUID | None = None
    status: str | None = None


class Reconciler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        providers: Mapping[str, PaymentProvider],
        dispatcher: SideEffectDispatcher,
        currency: CurrencyService,
    ) -> None:
        self.session_factory = session_factory
        self.providers = providers
        self.dispatcher = dispatcher
        self.currency = currency

    async def handle(self, event: NormalizedEvent) -> ReconcileResult:
        """Apply one normalised event. Never raises; failures become ERROR."""
        async with payment_locks.hold(event.provider_payment_id):
            try:
                return await self._handle(event)
            except Exception:
                logger.error(
                    "Failed to reconcile %s event %s for %s",
                    event.provider_name,
                    event.event_type,
                    event.provider_payment_id,
                    exc_info=True,
                )
                return ReconcileResult(ReconcileOutcome.ERROR)

    async def _handle(self, event: NormalizedEvent) -> ReconcileResult:
        async with self.session_factory() as db:
            try:
                if not await self._record_event(db, event):
                    await db.rollback()
                    logger.info(
                        "Duplicate %s event %s (%s); skipping",
                        event.provider_name,
                        event.dedup_key,
                        event.event_type,
                    )
                    return ReconcileResult(ReconcileOutcome.DUPLICATE)

                try:
                    donation = await self._find_donation(db, event)
                except UnknownPaymentError as exc:
                    # Dropping the dedup row lets a later redelivery try again.
                    await db.rollback()
                    logger.warning(
                        "%s (%s event %s)", exc.detail, event.provider_name, event.event_type
                    )
                    return ReconcileResult(ReconcileOutcome.UNKNOWN_PAYMENT)

                result, applied = await self._apply(db, event, donation)
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        if applied and event.outcome == "succeeded":
            self._dispatch_side_effects(donation)
        return result

    async def _record_event(self, db: AsyncSession, event: NormalizedEvent) -> bool:
        cutoff = datetime.now(UTC) - timedelta(hours=settings.WEBHOOK_DEDUP_RETENTION_HOURS)
        await db.execute(delete(ProviderEvent).where(ProviderEvent.received_at < cutoff))
        try:
            async with db.begin_nested():
                db.add(
                    ProviderEvent(
                        provider_name=event.provider_name,
                        dedup_key=event.dedup_key,
                        event_type=event.event_type,
                        related_provider_payment_id=event.provider_payment_id,
                        received_at=datetime.now(UTC),
                    )
                )
        except IntegrityError:
            return False
        return True

    async def _find_donation(self, db: AsyncSession, event: NormalizedEvent) -> Donation:
        donation = await ledger.get_by_provider_id(db, event.provider_payment_id)
        if donation is None and event.donation_id:
            try:
                donation = await db.get(Donation, uuid.UUID(event.donation_id))
            except ValueError:
                logger.warning("Ignoring malformed donation id %r in metadata", event.donation_id)
        if donation is None:
            raise UnknownPaymentError(f"No donation for provider id {event.provider_payment_id}")
        return donation

    async def _apply(
        self,
        db: AsyncSession,
        event: NormalizedEvent,
        donation: Donation,
    ) -> tuple[ReconcileResult, bool]:
        try:
            if event.outcome == "succeeded":
                self._check_amount(event, donation)
                transition = await ledger.mark_completed(
                    db,
                    donation.id,
                    event.provider_payment_id,
                    case_amount=await self._case_amount(db, donation),
                )
            elif event.outcome == "failed":
                transition = await ledger.mark_failed(db, donation.id, event.reason)
            else:
                transition = await ledger.mark_subscription_status(db, donation.id, "cancelled")
        except ConflictError as exc:
            logger.error(
                "Anomalous %s event %s for donation %s: %s",
                event.provider_name,
                event.event_type,
                donation.id,
                exc.detail,
            )
            return ReconcileResult(ReconcileOutcome.CONFLICT, donation.id, donation.status), False

        outcome = ReconcileOutcome.PROCESSED if transition.applied else ReconcileOutcome.NOOP
        return ReconcileResult(outcome, donation.id, transition.donation.status), transition.applied

    def _check_amount(self, event: NormalizedEvent, donation: Donation) -> None:
        if event.amount is None or donation.is_recurring:
            return
        expected = donation.charge_amount if donation.charge_amount is not None else donation.amount
        if event.amount != expected or (
            event.currency and event.currency.upper() != donation.currency
        ):
            logger.warning(
                "Amount mismatch for donation %s: provider reported %s %s, expected %s %s",
                donation.id,
                event.amount,
                event.currency,
                expected,
                donation.currency,
            )

    async def _case_amount(self, db: AsyncSession, donation: Donation) -> Decimal | None:
        """The donation converted to the case currency at the rate in effect now."""
        if donation.case_id is None or donation.status in CONFIRMED_STATUSES:
            return None
        case = await db.get(Case, donation.case_id)
        if case is None or case.currency == donation.currency:
            return None
        try:
            return await self.currency.convert(donation.amount, donation.currency, case.currency)
        except (ProviderUnavailableError, ValidationError) as exc:
            logger.error(
                "Could not convert donation %s from %s to %s; case total will exclude it: %s",
                donation.id,
                donation.currency,
                case.currency,
                exc.detail,
            )
            return None

    def _dispatch_side_effects(self, donation: Donation) -> None:
        if donation.case_id is not None:
            case_id = donation.case_id
            self.dispatcher.dispatch(
                f"recompute-case-{case_id}", lambda: self._recompute_case(case_id)
            )
        if donation.donor_email:
            donation_id = donation.id
            self.dispatcher.dispatch(
                f"receipt-{donation_id}", lambda: self._send_receipt(donation_id)
            )

    async def _recompute_case(self, case_id: uuid.UUID) -> None:
        async with self.session_factory() as db:
            await aggregator.recompute_collected(db, case_id, self.currency)
            await db.commit()

    async def _send_receipt(self, donation_id: uuid.UUID) -> None:
        async with self.session_factory() as db:
            donation = await ledger.get_donation(db, donation_id)
        if donation.is_recurring:
            await email.send_subscription_confirmation(donation, donation.donor_email)
        else:
            await email.send_donation_receipt(donation, donation.donor_email)

    async def confirm_client(
        self,
        donation_id: uuid.UUID,
        provider_payment_id: str,
    ) -> ReconcileResult:
        """Client-side confirmation: ask the provider, then reconcile like a webhook."""
        async with self.session_factory() as db:
            donation = await ledger.get_donation(db, donation_id)

        if provider_payment_id not in (
            donation.provider_payment_id,
            donation.provider_subscription_id,
        ):
            raise ConflictError(
                f"Provider payment {provider_payment_id} does not belong to donation {donation_id}"
            )

        provider = self.providers[donation.payment_method]
        event = await provider.fetch_confirmation(provider_payment_id)
        if event is None:
            return ReconcileResult(ReconcileOutcome.PENDING, donation.id, donation.status)

        event = event.model_copy(update={"donation_id": str(donation.id), "channel": "client"})
        return await self.handle(event)

    async def confirm_transfer(
        self,
        donation_id: uuid.UUID,
        outcome: str,
        reason: str | None = None,
    ) -> ReconcileResult:
        """Administrator confirmation of a bank transfer."""
        async with self.session_factory() as db:
            donation = await ledger.get_donation(db, donation_id)

        provider = self.providers.get(donation.payment_method)
        if not isinstance(provider, BankTransferProvider):
            raise ValidationError(
                f"Donation {donation_id} is paid by {donation.payment_method}, not bank transfer"
            )
        if donation.provider_payment_id is None:
            raise ConflictError(f"Donation {donation_id} has no bank-transfer reference yet")

        return await self.handle(provider.transfer_event(donation, outcome, reason))
