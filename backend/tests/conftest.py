"""Shared test fixtures.

Every test gets its own SQLite database file; no Postgres, Redis or provider
accounts are needed. Stripe's SDK calls are answered by an in-memory backend
(webhook signatures are still verified by the real SDK), PayPal's REST API and
the rate/geo-IP services are served by httpx.MockTransport handlers.
"""

import hashlib
import hmac
import json
import os
import time
import uuid
from collections.abc import AsyncGenerator
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
PAYPAL_VALID_SIGNATURE = "valid-paypal-signature"

os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key-for-jwt"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./unused-test.db"
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_PASSWORD"] = "correct-horse"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = STRIPE_WEBHOOK_SECRET
os.environ["RESEND_API_KEY"] = ""
os.environ["DOMESTIC_CURRENCY"] = "AUD"
os.environ["DEFAULT_CURRENCY"] = "USD"

import donations_api.core.dependencies as deps_mod  # noqa: E402
from donations_api.core.exceptions import ProviderUnavailableError  # noqa: E402
from donations_api.core.security import create_access_token  # noqa: E402
from donations_api.db.base import Base  # noqa: E402
from donations_api.main import app  # noqa: E402
from donations_api.models.case import Case  # noqa: E402
from donations_api.models.donation import Donation  # noqa: E402
from donations_api.services.currency import CurrencyService  # noqa: E402
from donations_api.services.providers.bank_transfer import BankTransferProvider  # noqa: E402
from donations_api.services.providers.paypal_provider import PayPalProvider  # noqa: E402
from donations_api.services.providers.stripe_provider import (  # noqa: E402
    ApplePayProvider,
    GooglePayProvider,
    StripeProvider,
)
from donations_api.services.reconciler import Reconciler  # noqa: E402
from donations_api.services.side_effects import SideEffectDispatcher  # noqa: E402

RATES = {
    "USD": "1",
    "AUD": "1.5",
    "EUR": "0.9",
    "GBP": "0.8",
    "JPY": "150",
    "PKR": "280",
}


# --- Stripe -----------------------------------------------------------------


class StripeBackend:
    """In-memory stand-in for the Stripe API objects the provider touches."""

    def __init__(self) -> None:
        self.intents: dict[str, dict] = {}
        self.subscriptions: dict[str, dict] = {}
        self.calls: list[tuple[str, dict]] = []
        self.unavailable = False

    def set_intent_status(self, intent_id: str, status: str, error: str | None = None) -> None:
        self.intents[intent_id]["status"] = status
        if error:
            self.intents[intent_id]["last_payment_error"] = {"message": error}

    def set_subscription_status(self, subscription_id: str, status: str) -> None:
        self.subscriptions[subscription_id]["status"] = status

    def handle(self, name: str, args: tuple, kwargs: dict):
        self.calls.append((name, kwargs))
        if name == "PaymentIntent.create":
            intent_id = f"pi_{uuid.uuid4().hex[:16]}"
            self.intents[intent_id] = {
                "id": intent_id,
                "status": "requires_payment_method",
                "amount": kwargs["amount"],
                "currency": kwargs["currency"],
                "metadata": kwargs.get("metadata", {}),
                "last_payment_error": None,
            }
            return SimpleNamespace(id=intent_id, client_secret=f"{intent_id}_secret_test")
        if name == "PaymentIntent.retrieve":
            intent = self.intents[args[0]]
            received = intent["amount"] if intent["status"] == "succeeded" else 0
            return SimpleNamespace(amount_received=received, **intent)
        if name == "Customer.create":
            return SimpleNamespace(id=f"cus_{uuid.uuid4().hex[:14]}")
        if name == "Price.create":
            return SimpleNamespace(id=f"price_{uuid.uuid4().hex[:14]}")
        if name == "Subscription.create":
            subscription_id = f"sub_{uuid.uuid4().hex[:14]}"
            self.subscriptions[subscription_id] = {
                "id": subscription_id,
                "status": "incomplete",
                "metadata": kwargs.get("metadata", {}),
            }
            return SimpleNamespace(
                id=subscription_id,
                latest_invoice={
                    "confirmation_secret": {"client_secret": f"{subscription_id}_secret"}
                },
            )
        if name == "Subscription.retrieve":
            return SimpleNamespace(**self.subscriptions[args[0]])
        raise AssertionError(f"unexpected Stripe call {name}")


class FakeStripeMixin:
    def __init__(self, backend: StripeBackend, **kwargs) -> None:
        self.backend = backend
        super().__init__(**kwargs)

    async def _call(self, func, *args, **kwargs):
        if self.backend.unavailable:
            raise ProviderUnavailableError("Stripe is unavailable: simulated outage")
        name = f"{func.__self__.__name__}.{func.__name__}"
        return self.backend.handle(name, args, kwargs)


class FakeStripeProvider(FakeStripeMixin, StripeProvider):
    pass


class FakeApplePayProvider(FakeStripeMixin, ApplePayProvider):
    pass


class FakeGooglePayProvider(FakeStripeMixin, GooglePayProvider):
    pass


def stripe_signature(
    payload: str,
    secret: str = STRIPE_WEBHOOK_SECRET,
    timestamp: int | None = None,
) -> str:
    """Build a Stripe-Signature header the way Stripe signs webhooks."""
    ts = timestamp if timestamp is not None else int(time.time())
    digest = hmac.new(secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def stripe_event(event_type: str, obj: dict, event_id: str | None = None) -> str:
    return json.dumps(
        {
            "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
            "object": "event",
            "type": event_type,
            "data": {"object": obj},
        }
    )


def signed_stripe_headers(payload: str, **kwargs) -> dict[str, str]:
    return {
        "Stripe-Signature": stripe_signature(payload, **kwargs),
        "Content-Type": "application/json",
    }


# --- PayPal -----------------------------------------------------------------


class FakePayPalAPI:
    """Minimal PayPal REST API behind httpx.MockTransport."""

    def __init__(self) -> None:
        self.orders: dict[str, dict] = {}
        self.subscriptions: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.capture_issues: dict[str, str] = {}
        self.unavailable = False

    def approve(self, order_id: str) -> None:
        self.orders[order_id]["status"] = "APPROVED"

    def activate(self, subscription_id: str) -> None:
        self.subscriptions[subscription_id]["status"] = "ACTIVE"

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unavailable:
            raise httpx.ConnectError("simulated outage", request=request)

        path = request.url.path
        body = {}
        if request.content and path != "/v1/oauth2/token":
            body = json.loads(request.content)

        if path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "A21-test", "expires_in": 32400})

        if path == "/v2/checkout/orders" and request.method == "POST":
            order_id = f"ORDER-{uuid.uuid4().hex[:12].upper()}"
            unit = body["purchase_units"][0]
            self.orders[order_id] = {
                "id": order_id,
                "status": "CREATED",
                "purchase_units": [
                    {
                        "reference_id": unit["reference_id"],
                        "custom_id": unit["custom_id"],
                        "amount": unit["amount"],
                    }
                ],
                "links": [
                    {"rel": "approve", "href": f"https://paypal.test/checkoutnow?token={order_id}"}
                ],
            }
            return httpx.Response(201, json=self.orders[order_id])

        if path.startswith("/v2/checkout/orders/"):
            parts = path.split("/")
            order = self.orders.get(parts[4])
            if order is None:
                return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})
            if path.endswith("/capture"):
                if parts[4] in self.capture_issues:
                    return httpx.Response(
                        422,
                        json={
                            "name": "UNPROCESSABLE_ENTITY",
                            "details": [{"issue": self.capture_issues[parts[4]]}],
                        },
                    )
                if order["status"] == "COMPLETED":
                    return httpx.Response(
                        422,
                        json={
                            "name": "UNPROCESSABLE_ENTITY",
                            "details": [{"issue": "ORDER_ALREADY_CAPTURED"}],
                        },
                    )
                unit = order["purchase_units"][0]
                order["status"] = "COMPLETED"
                unit["payments"] = {
                    "captures": [
                        {
                            "id": f"CAP-{uuid.uuid4().hex[:10].upper()}",
                            "status": "COMPLETED",
                            "amount": unit["amount"],
                            "custom_id": unit["custom_id"],
                        }
                    ]
                }
                return httpx.Response(201, json=order)
            return httpx.Response(200, json=order)

        if path == "/v1/billing/subscriptions" and request.method == "POST":
            subscription_id = f"I-{uuid.uuid4().hex[:12].upper()}"
            self.subscriptions[subscription_id] = {
                "id": subscription_id,
                "status": "APPROVAL_PENDING",
                "plan_id": body["plan_id"],
                "custom_id": body["custom_id"],
                "links": [
                    {
                        "rel": "approve",
                        "href": f"https://paypal.test/subscribe?ba={subscription_id}",
                    }
                ],
            }
            return httpx.Response(201, json=self.subscriptions[subscription_id])

        if path.startswith("/v1/billing/subscriptions/"):
            subscription = self.subscriptions.get(path.rsplit("/", 1)[-1])
            if subscription is None:
                return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})
            return httpx.Response(200, json=subscription)

        if path == "/v1/notifications/verify-webhook-signature":
            ok = body.get("transmission_sig") == PAYPAL_VALID_SIGNATURE
            return httpx.Response(200, json={"verification_status": "SUCCESS" if ok else "FAILURE"})

        return httpx.Response(404, json={"name": "NOT_FOUND", "path": path})


def paypal_headers(signature: str = PAYPAL_VALID_SIGNATURE) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "PAYPAL-AUTH-ALGO": "SHA256withRSA",
        "PAYPAL-CERT-URL": "https://api.paypal.com/v1/notifications/certs/CERT-test",
        "PAYPAL-TRANSMISSION-ID": str(uuid.uuid4()),
        "PAYPAL-TRANSMISSION-SIG": signature,
        "PAYPAL-TRANSMISSION-TIME": "2026-10-19T10:00:00Z",
    }


# --- Rates and geo-IP ---------------------------------------------------------


class FakeRateAPI:
    def __init__(self) -> None:
        self.rate_requests = 0
        self.fail_rates = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "rates.test":
            self.rate_requests += 1
            if self.fail_rates:
                return httpx.Response(503, json={"result": "error"})
            return httpx.Response(
                200,
                json={
                    "result": "success",
                    "base_code": "USD",
                    "rates": {k: float(v) for k, v in RATES.items()},
                },
            )
        if request.url.host == "geo.test":
            ip = request.url.path.strip("/").split("/")[0]
            if ip == "203.0.113.7":
                return httpx.Response(200, json={"ip": ip, "country": "PK", "currency": "PKR"})
            if ip == "198.51.100.9":
                return httpx.Response(200, json={"ip": ip, "country": "XX", "currency": "XYZ"})
            return httpx.Response(429, json={"error": True, "reason": "RateLimited"})
        return httpx.Response(404)


# --- Database -----------------------------------------------------------------


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'donations.db'}",
        poolclass=NullPool,
    )

    # pysqlite's implicit transaction handling breaks SAVEPOINT; take over BEGIN.
    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A session for service-level tests; commit before handing work to other sessions."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# --- Collaborators ------------------------------------------------------------


@pytest.fixture
def stripe_backend() -> StripeBackend:
    return StripeBackend()


@pytest.fixture
def paypal_api() -> FakePayPalAPI:
    return FakePayPalAPI()


@pytest.fixture
def rate_api() -> FakeRateAPI:
    return FakeRateAPI()


@pytest.fixture
def providers(stripe_backend, paypal_api) -> dict:
    stripe_kwargs = {
        "secret_key": "sk_test_dummy",
        "webhook_secret": STRIPE_WEBHOOK_SECRET,
        "tolerance": 300,
    }
    return {
        "stripe": FakeStripeProvider(stripe_backend, **stripe_kwargs),
        "apple_pay": FakeApplePayProvider(stripe_backend, **stripe_kwargs),
        "google_pay": FakeGooglePayProvider(stripe_backend, **stripe_kwargs),
        "paypal": PayPalProvider(
            client_id="paypal-client",
            secret="paypal-secret",
            webhook_id="WH-TEST",
            plan_ids={"monthly": "P-MONTHLY", "weekly": "P-WEEKLY"},
            base_url="https://api-m.sandbox.paypal.test",
            transport=httpx.MockTransport(paypal_api),
        ),
        "pakistan_gateway": BankTransferProvider(),
    }


@pytest.fixture
def currency_service(rate_api) -> CurrencyService:
    return CurrencyService(
        rate_url="https://rates.test/v6/latest/USD",
        geoip_url="https://geo.test/{ip}/json/",
        ttl_seconds=3600,
        transport=httpx.MockTransport(rate_api),
    )


@pytest.fixture
async def dispatcher() -> AsyncGenerator[SideEffectDispatcher, None]:
    dispatcher = SideEffectDispatcher(max_attempts=5, backoff_seconds=0.01)
    yield dispatcher
    await dispatcher.drain()


@pytest.fixture
def reconciler(session_factory, providers, dispatcher, currency_service) -> Reconciler:
    return Reconciler(session_factory, providers, dispatcher, currency_service)


@pytest.fixture
async def client(
    session_factory, providers, dispatcher, currency_service
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client with the database and providers swapped for test doubles."""

    async def _get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[deps_mod.get_db] = _get_db
    app.dependency_overrides[deps_mod.get_session_factory] = lambda: session_factory
    app.dependency_overrides[deps_mod.get_providers] = lambda: providers
    app.dependency_overrides[deps_mod.get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[deps_mod.get_currency_service] = lambda: currency_service
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            yield c
    finally:
        await dispatcher.drain()
        app.dependency_overrides.clear()


def admin_headers(sub: str = "admin") -> dict:
    """Return Authorization headers with an admin JWT."""
    return {"Authorization": f"Bearer {create_access_token(sub)}"}


# --- Seed helpers ---------------------------------------------------------------


async def seed_case(session_factory, **overrides) -> Case:
    values = {
        "title": "Mobile clinic in Tharparkar",
        "description": "Monthly running costs for the mobile clinic.",
        "case_type": "zakaat",
        "currency": "AUD",
        "amount_required": Decimal("5000.00"),
        "active": True,
        "recurring_allowed": True,
    }
    values.update(overrides)
    async with session_factory() as session:
        case = Case(**values)
        session.add(case)
        await session.commit()
        await session.refresh(case)
    return case


async def seed_donation(session_factory, **overrides) -> Donation:
    values = {
        "type": "sadqah",
        "amount": Decimal("100.00"),
        "currency": "AUD",
        "frequency": "one-off",
        "payment_method": "stripe",
        "status": "pending",
        "cover_fees": True,
        "processing_fee": Decimal("0.00"),
        "donor_email": "donor@example.org",
        "donor_name": "Amina",
    }
    values.update(overrides)
    async with session_factory() as session:
        donation = Donation(**values)
        session.add(donation)
        await session.commit()
        await session.refresh(donation)
    return donation


async def load_donation(session_factory, donation_id) -> Donation:
    async with session_factory() as session:
        return await session.get(Donation, donation_id)


async def load_case(session_factory, case_id) -> Case:
    async with session_factory() as session:
        return await session.get(Case, case_id)
