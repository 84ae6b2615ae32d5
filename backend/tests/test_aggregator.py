"""Case total recomputation tests."""

import asyncio
import logging
import uuid
from decimal import Decimal

import pytest

from donations_api.core.exceptions import NotFoundError
from donations_api.schemas.events import PaymentSucceeded
from donations_api.services import aggregator
from tests.conftest import load_case, load_donation, seed_case, seed_donation


@pytest.mark.asyncio
async def test_total_counts_only_confirmed_donations(session_factory):
    case = await seed_case(session_factory)
    await seed_donation(
        session_factory, case_id=case.id, status="completed", case_amount=Decimal("100.00")
    )
    await seed_donation(
        session_factory,
        case_id=case.id,
        status="active_subscription",
        frequency="monthly",
        amount=Decimal("25.50"),
        case_amount=Decimal("25.50"),
    )
    await seed_donation(session_factory, case_id=case.id, status="pending")
    await seed_donation(session_factory, case_id=case.id, status="awaiting_confirmation")
    await seed_donation(
        session_factory, case_id=case.id, status="failed", case_amount=Decimal("999.00")
    )

    async with session_factory() as db:
        updated = await aggregator.recompute_collected(db, case.id)
        await db.commit()

    assert updated.amount_collected == Decimal("125.50")
    assert (await load_case(session_factory, case.id)).amount_collected == Decimal("125.50")


@pytest.mark.asyncio
async def test_recompute_is_idempotent(session_factory):
    case = await seed_case(session_factory)
    await seed_donation(
        session_factory, case_id=case.id, status="completed", case_amount=Decimal("40.00")
    )

    for _ in range(3):
        async with session_factory() as db:
            await aggregator.recompute_collected(db, case.id)
            await db.commit()

    assert (await load_case(session_factory, case.id)).amount_collected == Decimal("40.00")


@pytest.mark.asyncio
async def test_recompute_repairs_a_drifted_total(session_factory):
    case = await seed_case(session_factory, amount_collected=Decimal("7777.00"))
    await seed_donation(
        session_factory, case_id=case.id, status="completed", case_amount=Decimal("10.00")
    )

    async with session_factory() as db:
        await aggregator.recompute_collected(db, case.id)
        await db.commit()

    assert (await load_case(session_factory, case.id)).amount_collected == Decimal("10.00")


@pytest.mark.asyncio
async def test_unconverted_donations_are_excluded_and_logged(session_factory, caplog):
    case = await seed_case(session_factory, currency="USD")
    await seed_donation(
        session_factory, case_id=case.id, status="completed", case_amount=Decimal("60.00")
    )
    await seed_donation(session_factory, case_id=case.id, status="completed", case_amount=None)

    with caplog.at_level(logging.ERROR, logger="donations_api.services.aggregator"):
        async with session_factory() as db:
            updated = await aggregator.recompute_collected(db, case.id)
            await db.commit()

    assert updated.amount_collected == Decimal("60.00")
    assert "without a converted amount" in caplog.text


@pytest.mark.asyncio
async def test_concurrent_recomputes_agree(session_factory):
    case = await seed_case(session_factory)
    for amount in ("10.00", "20.00", "30.00"):
        await seed_donation(
            session_factory, case_id=case.id, status="completed", case_amount=Decimal(amount)
        )

    async def _recompute():
        async with session_factory() as db:
            await aggregator.recompute_collected(db, case.id)
            await db.commit()

    await asyncio.gather(*(_recompute() for _ in range(5)))

    assert (await load_case(session_factory, case.id)).amount_collected == Decimal("60.00")
    assert len(aggregator.case_locks) == 0


@pytest.mark.asyncio
async def test_recompute_all_and_missing_case(session_factory):
    first = await seed_case(session_factory, title="First")
    second = await seed_case(session_factory, title="Second")
    await seed_donation(
        session_factory, case_id=first.id, status="completed", case_amount=Decimal("5.00")
    )
    await seed_donation(
        session_factory, case_id=second.id, status="completed", case_amount=Decimal("8.00")
    )

    async with session_factory() as db:
        cases = await aggregator.recompute_all(db)
        await db.commit()

    assert {c.id: c.amount_collected for c in cases} == {
        first.id: Decimal("5.00"),
        second.id: Decimal("8.00"),
    }

    async with session_factory() as db:
        with pytest.raises(NotFoundError):
            await aggregator.recompute_collected(db, uuid.uuid4())


@pytest.mark.asyncio
async def test_recompute_converts_donations_completed_during_rate_outage(
    session_factory, reconciler, dispatcher, rate_api, currency_service
):
    case = await seed_case(session_factory, currency="AUD")
    donation = await seed_donation(
        session_factory,
        case_id=case.id,
        currency="USD",
        status="awaiting_confirmation",
        provider_payment_id="pi_usd_outage",
    )

    rate_api.fail_rates = True
    await reconciler.handle(
        PaymentSucceeded(
            provider_name="stripe",
            event_type="payment_intent.succeeded",
            provider_payment_id="pi_usd_outage",
            event_id="evt_usd_outage",
        )
    )
    await dispatcher.drain()
    assert (await load_donation(session_factory, donation.id)).case_amount is None
    assert (await load_case(session_factory, case.id)).amount_collected == Decimal("0.00")

    rate_api.fail_rates = False
    async with session_factory() as db:
        updated = await aggregator.recompute_collected(db, case.id, currency_service)
        await db.commit()

    assert updated.amount_collected == Decimal("150.00")
    stored = await load_donation(session_factory, donation.id)
    assert stored.status == "completed"
    assert stored.case_amount == Decimal("150.00")
    assert (await load_case(session_factory, case.id)).amount_collected == Decimal("150.00")


@pytest.mark.asyncio
async def test_recompute_all_keeps_excluding_while_rates_are_down(
    session_factory, rate_api, currency_service, caplog
):
    case = await seed_case(session_factory, currency="AUD")
    await seed_donation(
        session_factory, case_id=case.id, status="completed", case_amount=Decimal("30.00")
    )
    unconverted = await seed_donation(
        session_factory, case_id=case.id, status="completed", currency="EUR"
    )
    rate_api.fail_rates = True

    with caplog.at_level(logging.WARNING, logger="donations_api.services.aggregator"):
        async with session_factory() as db:
            cases = await aggregator.recompute_all(db, currency_service)
            await db.commit()

    assert [c.amount_collected for c in cases] == [Decimal("30.00")]
    assert (await load_donation(session_factory, unconverted.id)).case_amount is None
    assert "still has no AUD amount" in caplog.text
    assert "excluded until reconciled" in caplog.text
