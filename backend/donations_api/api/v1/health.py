"""Health check endpoint."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from donations_api.core.dependencies import get_providers, get_session_factory
from donations_api.services.providers.base import PaymentProvider

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    providers: dict[str, PaymentProvider] = Depends(get_providers),
):
    """Check DB connectivity and report which payment methods are configured."""
    db_status = "ok"
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Health check database query failed: %s", exc)
        db_status = "error"

    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "db": db_status,
        "providers": {name: provider.configured for name, provider in providers.items()},
        "version": "0.1.0",
    }
