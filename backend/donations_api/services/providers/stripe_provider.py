"""Stripe card, Apple Pay and Google Pay payments.

One-off donations are PaymentIntents; weekly and monthly donations are
Stripe subscriptions whose first invoice's client secret is handed to the
browser. The SDK is synchronous, so every call runs in the threadpool.
"""

import json
import logging
from collections.abc import Mapping
from decimal import Decimal

import stripe
from pydantic import ValidationError as SchemaValidationError
from starlette.concurrency import run_in_threadpool

from donations_api.core.config import settings
from donations_api.core.exceptions import (
    ProviderUnavailableError,
    ValidationError,
    WebhookSignatureError,
)
from donations_api.models.donation import Donation
from donations_api.schemas.events import (
    NormalizedEvent,
    PaymentFailed,
    PaymentSucceeded,
    SubscriptionCancelled,
)
from donations_api.services.providers.base import PaymentProvider, ProviderSession

logger = logging.getLogger(__name__)

# https://docs.stripe.com/currencies#zero-decimal
ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
        "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
    }
)

INTERVALS = {"weekly": "week", "monthly": "month"}

HANDLED_EVENT_TYPES = (
    "payment_intent.succeeded",
    "payment_intent.payment_failed",
    "checkout.session.completed",
    "invoice.paid",
    "invoice.payment_succeeded",
    "invoice.payment_failed",
    "customer.subscription.deleted",
)


def to_minor_units(amount: Decimal, currency: str) -> int:
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return int(amount.quantize(Decimal("1")))
    return int((amount * 100).quantize(Decimal("1")))


def from_minor_units(value: int | None, currency: str | None) -> Decimal | None:
    if value is None or currency is None:
        return None
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(value)
    return (Decimal(value) / 100).quantize(Decimal("0.01"))


def _metadata_donation_id(obj: Mapping) -> str | None:
    metadata = obj.get("metadata") or {}
    return metadata.get("donation_id")


def _invoice_subscription_id(invoice: Mapping) -> str | None:
    # Older API versions put the subscription on the invoice; newer ones under parent.
    if invoice.get("subscription"):
        sub = invoice["subscription"]
        return sub if isinstance(sub, str) else sub.get("id")
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return details.get("subscription")


class StripeProvider(PaymentProvider):
    name = "stripe"
    # None lets Stripe offer every method enabled on the account.
    payment_method_types: list[str] | None = None

    def __init__(
        self,
        secret_key: str | None = None,
        webhook_secret: str | None = None,
        tolerance: int | None = None,
    ) -> None:
        self.secret_key = secret_key if secret_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        )
        self.tolerance = (
            tolerance if tolerance is not None else settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS
        )

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    async def _call(self, func, *args, **kwargs):
        if not self.secret_key:
            raise ProviderUnavailableError("Stripe is not configured")
        try:
            return await run_in_threadpool(func, *args, api_key=self.secret_key, **kwargs)
        except stripe.InvalidRequestError as exc:
            raise ValidationError(
                f"Stripe rejected the request: {exc.user_message or exc}"
            ) from exc
        except stripe.StripeError as exc:
            logger.error("Stripe call %s failed: %s", getattr(func, "__qualname__", func), exc)
            raise ProviderUnavailableError(f"Stripe is unavailable: {exc}") from exc

    def _metadata(self, donation: Donation) -> dict[str, str]:
        return {
            "donation_id": str(donation.id),
            "donation_type": donation.type,
            "case_id": str(donation.case_id) if donation.case_id else "",
            "payment_method": donation.payment_method,
        }

    async def create_session(self, donation: Donation, charge_amount: Decimal) -> ProviderSession:
        if donation.is_recurring:
            return await self._create_subscription(donation, charge_amount)

        params: dict = {
            "amount": to_minor_units(charge_amount, donation.currency),
            "currency": donation.currency.lower(),
            "metadata": self._metadata(donation),
            "description": f"{donation.type.title()} donation",
        }
        if self.payment_method_types:
            params["payment_method_types"] = self.payment_method_types
        else:
            params["automatic_payment_methods"] = {"enabled": True}
        if donation.donor_email:
            params["receipt_email"] = donation.donor_email

        intent = await self._call(
            stripe.PaymentIntent.create,
            idempotency_key=f"donation-{donation.id}-{params['amount']}",
            **params,
        )
        logger.info("Created PaymentIntent %s for donation %s", intent.id, donation.id)
        return ProviderSession(provider_payment_id=intent.id, client_secret=intent.client_secret)

    async def _create_subscription(
        self, donation: Donation, charge_amount: Decimal
    ) -> ProviderSession:
        metadata = self._metadata(donation)
        customer = await self._call(
            stripe.Customer.create,
            email=donation.donor_email,
            name=donation.donor_name,
            metadata=metadata,
        )
        price = await self._call(
            stripe.Price.create,
            unit_amount=to_minor_units(charge_amount, donation.currency),
            currency=donation.currency.lower(),
            recurring={"interval": INTERVALS[donation.frequency]},
            product_data={"name": f"{donation.frequency.title()} {donation.type} donation"},
        )
        subscription = await self._call(
            stripe.Subscription.create,
            customer=customer.id,
            items=[{"price": price.id}],
            payment_behavior="default_incomplete",
            payment_settings={"save_default_payment_method": "on_subscription"},
            expand=["latest_invoice.confirmation_secret"],
            metadata=metadata,
        )

        invoice = subscription.latest_invoice
        secret = None
        if invoice and invoice.get("confirmation_secret"):
            secret = invoice["confirmation_secret"].get("client_secret")
        logger.info("Created subscription %s for donation %s", subscription.id, donation.id)
        return ProviderSession(provider_subscription_id=subscription.id, client_secret=secret)

    async def normalize_webhook_event(
        self,
        payload: bytes,
        headers: Mapping[str, str],
    ) -> NormalizedEvent | None:
        if not self.webhook_secret:
            raise WebhookSignatureError("Stripe webhook secret is not configured")
        signature = headers.get("stripe-signature")
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")

        try:
            text = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                text, signature, self.webhook_secret, self.tolerance
            )
        except UnicodeDecodeError as exc:
            raise WebhookSignatureError("Webhook payload is not valid UTF-8") from exc
        except stripe.SignatureVerificationError as exc:
            raise WebhookSignatureError(f"Invalid Stripe signature: {exc}") from exc

        try:
            event = json.loads(text)
            return self._normalize(event)
        except (ValueError, KeyError, TypeError, AttributeError, SchemaValidationError) as exc:
            raise WebhookSignatureError(f"Malformed Stripe event: {exc}") from exc

    def _normalize(self, event: dict) -> NormalizedEvent | None:
        event_type = event["type"]
        obj = event["data"]["object"]
        common = {
            "provider_name": self.name,
            "event_type": event_type,
            "event_id": event.get("id"),
        }

        if event_type not in HANDLED_EVENT_TYPES:
            logger.info("Ignoring Stripe event %s (%s)", event.get("id"), event_type)
            return None

        if event_type.startswith("payment_intent."):
            if obj.get("invoice"):
                # Subscription charges are reconciled from the invoice events.
                return None
            currency = obj.get("currency")
            fields = {
                **common,
                "provider_payment_id": obj["id"],
                "amount": from_minor_units(
                    obj.get("amount_received") or obj.get("amount"), currency
                ),
                "currency": currency.upper() if currency else None,
                "donation_id": _metadata_donation_id(obj),
            }
            if event_type == "payment_intent.succeeded":
                return PaymentSucceeded(**fields)
            error = obj.get("last_payment_error") or {}
            return PaymentFailed(reason=error.get("message") or "payment failed", **fields)

        if event_type == "checkout.session.completed":
            if obj.get("payment_status") != "paid":
                return None
            currency = obj.get("currency")
            return PaymentSucceeded(
                **common,
                provider_payment_id=obj.get("subscription") or obj.get("payment_intent"),
                amount=from_minor_units(obj.get("amount_total"), currency),
                currency=currency.upper() if currency else None,
                donation_id=_metadata_donation_id(obj) or obj.get("client_reference_id"),
            )

        if event_type.startswith("invoice."):
            subscription_id = _invoice_subscription_id(obj)
            if not subscription_id:
                return None
            currency = obj.get("currency")
            fields = {
                **common,
                "provider_payment_id": subscription_id,
                "currency": currency.upper() if currency else None,
                "donation_id": _metadata_donation_id(
                    obj.get("subscription_details")
                    or (obj.get("parent") or {}).get("subscription_details")
                    or {}
                ),
            }
            if event_type == "invoice.payment_failed":
                if obj.get("billing_reason") != "subscription_create":
                    logger.warning(
                        "Renewal payment failed for subscription %s (invoice %s)",
                        subscription_id,
                        obj.get("id"),
                    )
                    return None
                return PaymentFailed(
                    amount=from_minor_units(obj.get("amount_due"), currency),
                    reason="first subscription payment failed",
                    **fields,
                )
            return PaymentSucceeded(
                amount=from_minor_units(obj.get("amount_paid"), currency), **fields
            )

        # customer.subscription.deleted
        return SubscriptionCancelled(
            **common,
            provider_payment_id=obj["id"],
            donation_id=_metadata_donation_id(obj),
        )

    async def fetch_confirmation(self, provider_payment_id: str) -> NormalizedEvent | None:
        if provider_payment_id.startswith("sub_"):
            return await self._fetch_subscription(provider_payment_id)

        intent = await self._call(stripe.PaymentIntent.retrieve, provider_payment_id)
        currency = intent.currency
        fields = {
            "provider_name": self.name,
            "event_type": f"payment_intent.{intent.status}",
            "provider_payment_id": intent.id,
            "amount": from_minor_units(intent.amount_received or intent.amount, currency),
            "currency": currency.upper() if currency else None,
            "donation_id": (intent.metadata or {}).get("donation_id"),
            "channel": "client",
        }
        if intent.status == "succeeded":
            return PaymentSucceeded(**fields)
        if intent.status == "canceled" or (
            intent.status == "requires_payment_method" and intent.last_payment_error
        ):
            error = intent.last_payment_error or {}
            return PaymentFailed(reason=error.get("message") or intent.status, **fields)
        return None

    async def _fetch_subscription(self, subscription_id: str) -> NormalizedEvent | None:
        subscription = await self._call(stripe.Subscription.retrieve, subscription_id)
        fields = {
            "provider_name": self.name,
            "event_type": f"subscription.{subscription.status}",
            "provider_payment_id": subscription.id,
            "donation_id": (subscription.metadata or {}).get("donation_id"),
            "channel": "client",
        }
        if subscription.status in ("active", "trialing"):
            return PaymentSucceeded(**fields)
        if subscription.status in ("incomplete_expired", "canceled"):
            return PaymentFailed(reason=f"subscription {subscription.status}", **fields)
        return None


class ApplePayProvider(StripeProvider):
    """Apple Pay wallets settle through Stripe as card PaymentIntents."""

    name = "apple_pay"
    payment_method_types = ["card"]


class GooglePayProvider(StripeProvider):
    name = "google_pay"
    payment_method_types = ["card"]
