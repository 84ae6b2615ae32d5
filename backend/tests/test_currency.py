"""Exchange-rate cache, conversion and geo-IP currency detection."""

from decimal import Decimal

import pytest
from httpx import AsyncClient

from donations_api.core.exceptions import ProviderUnavailableError, ValidationError
from donations_api.services.currency import convert
from tests.conftest import RATES

TABLE = {code: Decimal(rate) for code, rate in RATES.items()}


def test_convert_goes_through_base_currency():
    assert convert(Decimal("150.00"), "AUD", "USD", TABLE) == Decimal("100.00")
    assert convert(Decimal("100.00"), "USD", "PKR", TABLE) == Decimal("28000.00")
    assert convert(Decimal("90.00"), "eur", "gbp", TABLE) == Decimal("80.00")


def test_convert_rounds_half_up():
    # 1.00 AUD -> 0.666... USD
    assert convert(Decimal("1.00"), "AUD", "USD", TABLE) == Decimal("0.67")
    # 0.01 USD -> 0.015 AUD
    assert convert(Decimal("0.01"), "USD", "AUD", TABLE) == Decimal("0.02")


def test_convert_same_currency_skips_table():
    assert convert(Decimal("12.345"), "AUD", "aud", {}) == Decimal("12.35")


def test_convert_missing_rate():
    with pytest.raises(ValidationError):
        convert(Decimal("10"), "AUD", "NZD", TABLE)


@pytest.mark.asyncio
async def test_rates_are_cached(currency_service, rate_api):
    base, rates = await currency_service.get_rates()
    assert base == "USD"
    assert rates["PKR"] == Decimal("280")

    await currency_service.get_rates()
    await currency_service.convert(Decimal("10"), "AUD", "USD")
    assert rate_api.rate_requests == 1


@pytest.mark.asyncio
async def test_stale_rates_served_when_refresh_fails(currency_service, rate_api):
    await currency_service.get_rates()
    currency_service.ttl_seconds = 0
    currency_service._fetched_at -= 10
    rate_api.fail_rates = True

    base, rates = await currency_service.get_rates()
    assert rate_api.rate_requests == 2
    assert rates["AUD"] == Decimal("1.5")


@pytest.mark.asyncio
async def test_cold_cache_failure_is_provider_unavailable(currency_service, rate_api):
    rate_api.fail_rates = True
    with pytest.raises(ProviderUnavailableError):
        await currency_service.get_rates()


@pytest.mark.asyncio
async def test_currency_for_ip(currency_service):
    assert await currency_service.currency_for_ip("203.0.113.7") == "PKR"
    # Unsupported currency and lookup failures fall back to the default.
    assert await currency_service.currency_for_ip("198.51.100.9") == "USD"
    assert await currency_service.currency_for_ip("192.0.2.1") == "USD"
    assert await currency_service.currency_for_ip(None) == "USD"


@pytest.mark.asyncio
async def test_rates_endpoint(client: AsyncClient):
    response = await client.get("/api/v1/currency/rates")
    assert response.status_code == 200
    data = response.json()
    assert data["base"] == "USD"
    assert Decimal(data["rates"]["AUD"]) == Decimal("1.5")


@pytest.mark.asyncio
async def test_rates_endpoint_unavailable(client: AsyncClient, rate_api):
    rate_api.fail_rates = True
    response = await client.get("/api/v1/currency/rates")
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_by_ip_endpoint_uses_forwarded_address(client: AsyncClient):
    response = await client.get(
        "/api/v1/currency/by-ip", headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}
    )
    assert response.json() == {"currency": "PKR"}

    fallback = await client.get("/api/v1/currency/by-ip")
    assert fallback.json() == {"currency": "USD"}
