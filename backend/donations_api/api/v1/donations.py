"""Public donation endpoints: create, read, open a payment session, confirm."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from donations_api.core.dependencies import get_db, get_providers, get_reconciler
from donations_api.core.exceptions import ConflictError
from donations_api.models.donation import STATUS_PENDING
from donations_api.schemas.donation import DonationCreateRequest, DonationResponse
from donations_api.schemas.payment import (
    ClientConfirmationRequest,
    PaymentSessionResponse,
    ReconcileResponse,
)
from donations_api.services import ledger
from donations_api.services.fees import estimate_fee
from donations_api.services.providers.base import PaymentProvider
from donations_api.services.reconciler import Reconciler

router = APIRouter()


@router.post("", response_model=DonationResponse, status_code=201)
async def create_donation(
    body: DonationCreateRequest,
    db: AsyncSession = Depends(get_db),
) -> DonationResponse:
    donation = await ledger.create_donation(db, body)
    return DonationResponse.model_validate(donation)


@router.get("/{donation_id}", response_model=DonationResponse)
async def get_donation(
    donation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> DonationResponse:
    donation = await ledger.get_donation(db, donation_id)
    return DonationResponse.model_validate(donation)


@router.post("/{donation_id}/session", response_model=PaymentSessionResponse)
async def open_payment_session(
    donation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    providers: dict[str, PaymentProvider] = Depends(get_providers),
) -> PaymentSessionResponse:
    """Create the provider-side payment and bind it to the donation.

    The charged amount comes from the same fee estimate the donor was shown.
    """
    donation = await ledger.get_donation(db, donation_id)
    if donation.status != STATUS_PENDING:
        raise ConflictError(
            f"Donation {donation_id} already has a payment session ({donation.status})"
        )

    estimate = estimate_fee(
        donation.amount,
        donation.currency,
        donation.payment_method,
        cover_fees=donation.cover_fees,
    )
    provider = providers[donation.payment_method]
    session = await provider.create_session(donation, estimate.total_with_fees)

    result = await ledger.attach_provider_session(
        db,
        donation.id,
        provider_payment_id=session.provider_payment_id,
        provider_subscription_id=session.provider_subscription_id,
        processing_fee=estimate.processing_fee,
        charge_amount=estimate.total_with_fees,
    )
    attached = result.donation

    return PaymentSessionResponse(
        donation_id=attached.id,
        payment_method=attached.payment_method,
        status=attached.status,
        provider_payment_id=attached.provider_payment_id,
        provider_subscription_id=attached.provider_subscription_id,
        client_secret=session.client_secret,
        order_id=session.order_id,
        approval_url=session.approval_url,
        instructions=session.instructions or None,
        processing_fee=estimate.processing_fee,
        charge_amount=estimate.total_with_fees,
        currency=attached.currency,
    )


@router.post("/{donation_id}/confirm", response_model=ReconcileResponse)
async def confirm_donation(
    donation_id: uuid.UUID,
    body: ClientConfirmationRequest,
    db: AsyncSession = Depends(get_db),
    reconciler: Reconciler = Depends(get_reconciler),
) -> ReconcileResponse:
    """Client callback after the provider's checkout returns.

    Shares deduplication with the webhook path, so whichever arrives first
    performs the transition and the other is a no-op.
    """
    result = await reconciler.confirm_client(donation_id, body.provider_payment_id)
    donation = await ledger.get_donation(db, donation_id)
    return ReconcileResponse(
        donation_id=donation.id,
        result=result.outcome.value,
        status=donation.status,
    )
