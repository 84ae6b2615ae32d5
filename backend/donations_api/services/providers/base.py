"""Payment provider capability interface."""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal

from donations_api.models.donation import Donation
from donations_api.schemas.events import NormalizedEvent


@dataclass
class ProviderSession:
    """What the client needs to complete a payment with the provider."""

    provider_payment_id: str | None = None
    provider_subscription_id: str | None = None
    client_secret: str | None = None
    order_id: str | None = None
    approval_url: str | None = None
    instructions: dict[str, str] = field(default_factory=dict)


class PaymentProvider(ABC):
    name: str

    @property
    def configured(self) -> bool:
        return True

    @abstractmethod
    async def create_session(self, donation: Donation, charge_amount: Decimal) -> ProviderSession:
        """Open a payment (or subscription) with the provider for charge_amount."""

    @abstractmethod
    async def normalize_webhook_event(
        self,
        payload: bytes,
        headers: Mapping[str, str],
    ) -> NormalizedEvent | None:
        """Verify and parse a webhook.

        Raises WebhookSignatureError for a bad signature or malformed payload;
        returns None for event types that are acknowledged and ignored.
        """

    @abstractmethod
    async def fetch_confirmation(self, provider_payment_id: str) -> NormalizedEvent | None:
        """Ask the provider for the authoritative state; None while still pending."""
