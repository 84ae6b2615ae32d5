"""Public donation counters."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient

from tests.conftest import seed_donation


@pytest.mark.asyncio
async def test_stats_count_confirmed_donations(client: AsyncClient, session_factory):
    now = datetime.now(UTC)
    await seed_donation(
        session_factory, status="completed", donor_email="amina@example.org", completed_at=now
    )
    await seed_donation(
        session_factory,
        status="completed",
        amount=Decimal("50.00"),
        donor_email="Amina@Example.org",
        completed_at=now,
    )
    await seed_donation(
        session_factory,
        status="active_subscription",
        subscription_status="active",
        frequency="monthly",
        currency="USD",
        amount=Decimal("20.00"),
        donor_email="bilal@example.org",
        completed_at=now,
    )
    await seed_donation(
        session_factory,
        status="completed",
        currency="PKR",
        amount=Decimal("5000.00"),
        donor_email=None,
        completed_at=now - timedelta(days=60),
    )
    await seed_donation(session_factory, status="pending")
    await seed_donation(session_factory, status="failed", failure_reason="declined")

    response = await client.get("/api/v1/stats")
    assert response.status_code == 200
    data = response.json()
    assert data["confirmed_donations"] == 4
    assert data["donors"] == 2
    assert data["active_subscriptions"] == 1
    assert data["donations_last_30_days"] == 3
    assert data["totals"] == [
        {"currency": "AUD", "amount": "150.00"},
        {"currency": "PKR", "amount": "5000.00"},
        {"currency": "USD", "amount": "20.00"},
    ]
    assert "last_updated" in data


@pytest.mark.asyncio
async def test_stats_on_empty_ledger(client: AsyncClient):
    data = (await client.get("/api/v1/stats")).json()
    assert data["confirmed_donations"] == 0
    assert data["donors"] == 0
    assert data["totals"] == []
