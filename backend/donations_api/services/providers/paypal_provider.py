"""PayPal Orders v2 and Subscriptions v1 over the REST API."""

import json
import logging
import time
from collections.abc import Mapping
from decimal import Decimal

import httpx
from pydantic import ValidationError as SchemaValidationError

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

# PayPal rejects decimals for these currencies.
ZERO_DECIMAL_CURRENCIES = frozenset({"HUF", "JPY", "TWD"})

SIGNATURE_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


def format_amount(amount: Decimal, currency: str) -> str:
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return str(amount.quantize(Decimal("1")))
    return f"{amount.quantize(Decimal('0.01'))}"


def _issues(resp: httpx.Response) -> list[str]:
    """Issue codes from a PayPal error body, e.g. ORDER_ALREADY_CAPTURED."""
    try:
        details = resp.json().get("details") or []
    except (ValueError, AttributeError):
        return []
    return [d["issue"] for d in details if isinstance(d, dict) and d.get("issue")]


def _money(node: Mapping | None) -> tuple[Decimal | None, str | None]:
    if not node or node.get("value") is None:
        return None, None
    return Decimal(str(node["value"])), node.get("currency_code")


def _link(resource: Mapping, rel: str) -> str | None:
    for link in resource.get("links") or []:
        if link.get("rel") == rel:
            return link.get("href")
    return None


class PayPalProvider(PaymentProvider):
    name = "paypal"

    def __init__(
        self,
        client_id: str | None = None,
        secret: str | None = None,
        webhook_id: str | None = None,
        plan_ids: dict[str, str] | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client_id = client_id if client_id is not None else settings.PAYPAL_CLIENT_ID
        self.secret = secret if secret is not None else settings.PAYPAL_SECRET
        self.webhook_id = webhook_id if webhook_id is not None else settings.PAYPAL_WEBHOOK_ID
        self.plan_ids = plan_ids if plan_ids is not None else settings.PAYPAL_PLAN_IDS
        self.base_url = base_url or settings.paypal_base_url
        self._transport = transport
        self._token: str | None = None
        self._token_expires_at: float = 0.0

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.secret)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    async def _access_token(self) -> str:
        if self._token and time.time() < self._token_expires_at:
            return self._token
        if not self.configured:
            raise ProviderUnavailableError("PayPal is not configured")
        try:
            async with self._client() as client:
                resp = await client.post(
                    "/v1/oauth2/token",
                    auth=(self.client_id, self.secret),
                    data={"grant_type": "client_credentials"},
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(f"PayPal authentication failed: {exc}") from exc
        data = resp.json()
        self._token = data["access_token"]
        # Refresh a minute early.
        self._token_expires_at = time.time() + int(data.get("expires_in", 300)) - 60
        return self._token

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict | None = None,
        request_id: str | None = None,
        allow_statuses: tuple[int, ...] = (),
    ) -> httpx.Response:
        token = await self._access_token()
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        try:
            async with self._client() as client:
                resp = await client.request(method, path, json=json_body, headers=headers)
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(f"PayPal is unavailable: {exc}") from exc

        if resp.status_code in allow_statuses or resp.is_success:
            return resp
        if resp.status_code in (400, 404, 422):
            raise ValidationError(f"PayPal rejected {method} {path}: {resp.text[:300]}")
        logger.error(
            "PayPal %s %s returned %d: %s", method, path, resp.status_code, resp.text[:300]
        )
        raise ProviderUnavailableError(f"PayPal returned {resp.status_code}")

    async def create_session(self, donation: Donation, charge_amount: Decimal) -> ProviderSession:
        if donation.is_recurring:
            return await self._create_subscription(donation, charge_amount)

        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": str(donation.id),
                    "custom_id": str(donation.id),
                    "description": f"{donation.type.title()} donation",
                    "amount": {
                        "currency_code": donation.currency,
                        "value": format_amount(charge_amount, donation.currency),
                    },
                }
            ],
        }
        resp = await self._request(
            "POST", "/v2/checkout/orders", json_body=body, request_id=f"order-{donation.id}"
        )
        order = resp.json()
        logger.info("Created PayPal order %s for donation %s", order["id"], donation.id)
        return ProviderSession(
            provider_payment_id=order["id"],
            order_id=order["id"],
            approval_url=_link(order, "approve") or _link(order, "payer-action"),
        )

    async def _create_subscription(
        self, donation: Donation, charge_amount: Decimal
    ) -> ProviderSession:
        plan_id = self.plan_ids.get(donation.frequency)
        if not plan_id:
            raise ValidationError(f"PayPal {donation.frequency} donations are not available")

        body: dict = {
            "plan_id": plan_id,
            "custom_id": str(donation.id),
            "plan": {
                "billing_cycles": [
                    {
                        "sequence": 1,
                        "pricing_scheme": {
                            "fixed_price": {
                                "currency_code": donation.currency,
                                "value": format_amount(charge_amount, donation.currency),
                            }
                        },
                    }
                ]
            },
        }
        if donation.donor_email:
            body["subscriber"] = {"email_address": donation.donor_email}
        resp = await self._request(
            "POST",
            "/v1/billing/subscriptions",
            json_body=body,
            request_id=f"subscription-{donation.id}",
        )
        subscription = resp.json()
        logger.info(
            "Created PayPal subscription %s for donation %s", subscription["id"], donation.id
        )
        return ProviderSession(
            provider_subscription_id=subscription["id"],
            approval_url=_link(subscription, "approve"),
        )

    async def _verify_signature(self, headers: Mapping[str, str], event: dict) -> None:
        if not self.webhook_id:
            raise WebhookSignatureError("PayPal webhook id is not configured")
        body: dict = {}
        for field, header in SIGNATURE_HEADERS.items():
            value = headers.get(header)
            if not value:
                raise WebhookSignatureError(f"Missing {header} header")
            body[field] = value
        body["webhook_id"] = self.webhook_id
        body["webhook_event"] = event

        try:
            resp = await self._request(
                "POST", "/v1/notifications/verify-webhook-signature", json_body=body
            )
        except ValidationError as exc:
            raise WebhookSignatureError(
                f"PayPal could not verify the webhook signature: {exc.detail}"
            ) from exc
        if resp.json().get("verification_status") != "SUCCESS":
            raise WebhookSignatureError("PayPal webhook signature verification failed")

    async def normalize_webhook_event(
        self,
        payload: bytes,
        headers: Mapping[str, str],
    ) -> NormalizedEvent | None:
        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise WebhookSignatureError("Malformed PayPal webhook payload") from exc
        if not isinstance(event, dict):
            raise WebhookSignatureError("Malformed PayPal webhook payload")

        await self._verify_signature(headers, event)

        try:
            return await self._normalize(event)
        except (KeyError, TypeError, AttributeError, SchemaValidationError) as exc:
            raise WebhookSignatureError(f"Malformed PayPal event: {exc}") from exc

    async def _normalize(self, event: dict) -> NormalizedEvent | None:
        event_type = event["event_type"]
        resource = event["resource"]
        common = {
            "provider_name": self.name,
            "event_type": event_type,
            "event_id": event.get("id"),
        }

        if event_type == "CHECKOUT.ORDER.APPROVED":
            # Approval alone moves no money; capture now and report the capture result.
            confirmed = await self.fetch_confirmation(resource["id"])
            if confirmed is None:
                return None
            return confirmed.model_copy(update={**common, "channel": "webhook"})

        if event_type in ("PAYMENT.CAPTURE.COMPLETED", "PAYMENT.CAPTURE.DENIED"):
            related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
            amount, currency = _money(resource.get("amount"))
            fields = {
                **common,
                "provider_payment_id": related.get("order_id") or resource["id"],
                "amount": amount,
                "currency": currency,
                "donation_id": resource.get("custom_id"),
            }
            if event_type == "PAYMENT.CAPTURE.COMPLETED":
                return PaymentSucceeded(**fields)
            return PaymentFailed(reason="capture denied", **fields)

        if event_type == "BILLING.SUBSCRIPTION.ACTIVATED":
            return PaymentSucceeded(
                **common,
                provider_payment_id=resource["id"],
                donation_id=resource.get("custom_id"),
            )

        if event_type == "BILLING.SUBSCRIPTION.CANCELLED":
            return SubscriptionCancelled(
                **common,
                provider_payment_id=resource["id"],
                donation_id=resource.get("custom_id"),
            )

        logger.info("Ignoring PayPal event %s (%s)", event.get("id"), event_type)
        return None

    async def fetch_confirmation(self, provider_payment_id: str) -> NormalizedEvent | None:
        if provider_payment_id.startswith("I-"):
            return await self._fetch_subscription(provider_payment_id)

        resp = await self._request("GET", f"/v2/checkout/orders/{provider_payment_id}")
        order = resp.json()
        if order.get("status") == "APPROVED":
            resp = await self._request(
                "POST",
                f"/v2/checkout/orders/{provider_payment_id}/capture",
                request_id=f"capture-{provider_payment_id}",
                allow_statuses=(422,),
            )
            if resp.status_code == 422:
                issues = _issues(resp)
                if "ORDER_ALREADY_CAPTURED" in issues:
                    # Another channel won; read the final state.
                    resp = await self._request(
                        "GET", f"/v2/checkout/orders/{provider_payment_id}"
                    )
                elif "INSTRUMENT_DECLINED" in issues:
                    logger.warning(
                        "PayPal declined the funding source for order %s; "
                        "the payer has to choose another one",
                        provider_payment_id,
                    )
                    return None
                else:
                    logger.error(
                        "PayPal refused to capture order %s: %s",
                        provider_payment_id,
                        ", ".join(issues) or resp.text[:300],
                    )
                    raise ValidationError(
                        f"PayPal refused to capture order {provider_payment_id}"
                    )
            order = resp.json()
        return self._order_event(order)

    def _order_event(self, order: dict) -> NormalizedEvent | None:
        status = order.get("status")
        units = order.get("purchase_units") or [{}]
        unit = units[0]
        captures = (unit.get("payments") or {}).get("captures") or []
        capture = captures[0] if captures else {}
        amount, currency = _money(capture.get("amount") or unit.get("amount"))
        fields = {
            "provider_name": self.name,
            "event_type": f"order.{(status or 'unknown').lower()}",
            "provider_payment_id": order["id"],
            "amount": amount,
            "currency": currency,
            "donation_id": unit.get("custom_id") or capture.get("custom_id"),
            "channel": "client",
        }
        if status == "COMPLETED" and capture.get("status", "COMPLETED") == "COMPLETED":
            return PaymentSucceeded(**fields)
        if status == "VOIDED" or capture.get("status") in ("DECLINED", "FAILED"):
            return PaymentFailed(reason=f"order {(status or 'unknown').lower()}", **fields)
        return None

    async def _fetch_subscription(self, subscription_id: str) -> NormalizedEvent | None:
        resp = await self._request("GET", f"/v1/billing/subscriptions/{subscription_id}")
        subscription = resp.json()
        status = subscription.get("status")
        fields = {
            "provider_name": self.name,
            "event_type": f"subscription.{(status or 'unknown').lower()}",
            "provider_payment_id": subscription_id,
            "donation_id": subscription.get("custom_id"),
            "channel": "client",
        }
        if status == "ACTIVE":
            return PaymentSucceeded(**fields)
        if status in ("CANCELLED", "EXPIRED"):
            return PaymentFailed(reason=f"subscription {status.lower()}", **fields)
        return None
