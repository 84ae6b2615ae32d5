"""Case endpoints: public reads, admin CRUD and total recomputation."""

import uuid
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from donations_api.core.dependencies import get_currency_service, get_db, require_admin
from donations_api.core.exceptions import NotFoundError, ValidationError
from donations_api.models.case import Case
from donations_api.models.donation import DONATION_STATUSES
from donations_api.schemas.case import CaseCreate, CaseResponse, CaseUpdate
from donations_api.schemas.donation import DonationListItem
from donations_api.services import aggregator, ledger
from donations_api.services.currency import CurrencyService

router = APIRouter()


async def _get_case(db: AsyncSession, case_id: uuid.UUID) -> Case:
    case = await db.get(Case, case_id)
    if case is None:
        raise NotFoundError(f"Case {case_id} not found")
    return case


@router.get("", response_model=list[CaseResponse])
async def list_cases(
    case_type: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
) -> list[CaseResponse]:
    """Active cases, newest first."""
    stmt = select(Case).where(Case.active.is_(True)).order_by(Case.created_at.desc())
    if case_type:
        stmt = stmt.where(Case.case_type == case_type)
    result = await db.execute(stmt)
    return [CaseResponse.model_validate(c) for c in result.scalars().all()]


@router.post("/recompute", response_model=list[CaseResponse])
async def recompute_all_cases(
    _admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    currency: CurrencyService = Depends(get_currency_service),
) -> list[CaseResponse]:
    cases = await aggregator.recompute_all(db, currency)
    return [CaseResponse.model_validate(c) for c in cases]


@router.get("/{case_id}", response_model=CaseResponse)
async def get_case(
    case_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> CaseResponse:
    return CaseResponse.model_validate(await _get_case(db, case_id))


@router.post("", response_model=CaseResponse, status_code=201)
async def create_case(
    body: CaseCreate,
    _admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> CaseResponse:
    case = Case(**body.model_dump())
    db.add(case)
    await db.flush()
    await db.refresh(case)
    return CaseResponse.model_validate(case)


@router.patch("/{case_id}", response_model=CaseResponse)
async def update_case(
    case_id: uuid.UUID,
    body: CaseUpdate,
    _admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> CaseResponse:
    case = await _get_case(db, case_id)

    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(case, field, value)
    case.updated_at = datetime.now(UTC)

    await db.flush()
    await db.refresh(case)
    return CaseResponse.model_validate(case)


@router.delete("/{case_id}", status_code=204)
async def delete_case(
    case_id: uuid.UUID,
    _admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> Response:
    case = await _get_case(db, case_id)
    await db.delete(case)
    await db.flush()
    return Response(status_code=204)


@router.get("/{case_id}/donations", response_model=list[DonationListItem])
async def list_case_donations(
    case_id: uuid.UUID,
    status: str | None = Query(None),
    _admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> list[DonationListItem]:
    await _get_case(db, case_id)
    if status is not None and status not in DONATION_STATUSES:
        raise ValidationError(f"Unknown donation status '{status}'")
    donations = await ledger.list_by_case(db, case_id, status=status)
    return [DonationListItem.model_validate(d) for d in donations]


@router.post("/{case_id}/recompute", response_model=CaseResponse)
async def recompute_case(
    case_id: uuid.UUID,
    _admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    currency: CurrencyService = Depends(get_currency_service),
) -> CaseResponse:
    case = await aggregator.recompute_collected(db, case_id, currency)
    return CaseResponse.model_validate(case)
