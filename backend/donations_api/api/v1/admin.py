"""Administrator actions on donations."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from donations_api.core.dependencies import get_db, get_reconciler, require_admin
from donations_api.schemas.payment import ReconcileResponse, TransferConfirmationRequest
from donations_api.services import ledger
from donations_api.services.reconciler import Reconciler

router = APIRouter()


@router.post("/donations/{donation_id}/confirm-transfer", response_model=ReconcileResponse)
async def confirm_bank_transfer(
    donation_id: uuid.UUID,
    body: TransferConfirmationRequest,
    _admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    reconciler: Reconciler = Depends(get_reconciler),
) -> ReconcileResponse:
    """Record that a bank transfer was (or was not) received."""
    result = await reconciler.confirm_transfer(donation_id, body.outcome, body.reason)
    donation = await ledger.get_donation(db, donation_id)
    return ReconcileResponse(
        donation_id=donation.id,
        result=result.outcome.value,
        status=donation.status,
    )
