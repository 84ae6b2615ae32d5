"""Manual bank transfers (the pakistan_gateway payment method).

There is no provider API: the donor is shown the account details and a
reference, and an administrator confirms the donation once the transfer is
seen on the statement.
"""

import logging
from collections.abc import Mapping
from decimal import Decimal
from typing import Literal

from donations_api.core.config import settings
from donations_api.models.donation import Donation
from donations_api.schemas.events import NormalizedEvent, PaymentFailed, PaymentSucceeded
from donations_api.services.providers.base import PaymentProvider, ProviderSession

logger = logging.getLogger(__name__)


def transfer_reference(donation: Donation) -> str:
    return f"CC-{donation.id.hex[:12].upper()}"


class BankTransferProvider(PaymentProvider):
    name = "pakistan_gateway"

    async def create_session(self, donation: Donation, charge_amount: Decimal) -> ProviderSession:
        reference = transfer_reference(donation)
        return ProviderSession(
            provider_payment_id=reference,
            instructions={
                "bank_name": settings.BANK_TRANSFER_BANK_NAME,
                "account_title": settings.BANK_TRANSFER_ACCOUNT_TITLE,
                "iban": settings.BANK_TRANSFER_IBAN,
                "reference": reference,
                "amount": f"{donation.currency} {charge_amount:.2f}",
            },
        )

    async def normalize_webhook_event(
        self,
        payload: bytes,
        headers: Mapping[str, str],
    ) -> NormalizedEvent | None:
        logger.warning("Bank transfers have no webhook; ignoring payload")
        return None

    async def fetch_confirmation(self, provider_payment_id: str) -> NormalizedEvent | None:
        # Only an administrator can confirm a transfer.
        return None

    def transfer_event(
        self,
        donation: Donation,
        outcome: Literal["succeeded", "failed"],
        reason: str | None = None,
    ) -> NormalizedEvent:
        fields = {
            "provider_name": self.name,
            "event_type": f"transfer.{outcome}",
            "provider_payment_id": donation.provider_payment_id or transfer_reference(donation),
            "amount": donation.charge_amount,
            "currency": donation.currency,
            "donation_id": str(donation.id),
            "channel": "client",
        }
        if outcome == "succeeded":
            return PaymentSucceeded(**fields)
        return PaymentFailed(reason=reason or "transfer not received", **fields)
