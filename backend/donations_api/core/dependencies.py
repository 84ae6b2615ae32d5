"""FastAPI dependency chain: DB session, admin JWT, providers, reconciler."""

from collections.abc import AsyncGenerator
from functools import lru_cache

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from donations_api.core.config import settings
from donations_api.core.security import ADMIN_ROLE, decode_access_token
from donations_api.db.session import async_session_factory
from donations_api.services.currency import CurrencyService
from donations_api.services.providers.base import PaymentProvider
from donations_api.services.providers.registry import build_provider_registry
from donations_api.services.reconciler import Reconciler
from donations_api.services.side_effects import SideEffectDispatcher

bearer_scheme = HTTPBearer(auto_error=False)

dispatcher = SideEffectDispatcher()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async DB session. Commits on success, rolls back on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


@lru_cache
def get_providers() -> dict[str, PaymentProvider]:
    return build_provider_registry(settings)


@lru_cache
def get_currency_service() -> CurrencyService:
    return CurrencyService()


def get_dispatcher() -> SideEffectDispatcher:
    return dispatcher


def get_reconciler(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    providers: dict[str, PaymentProvider] = Depends(get_providers),
    side_effects: SideEffectDispatcher = Depends(get_dispatcher),
    currency: CurrencyService = Depends(get_currency_service),
) -> Reconciler:
    return Reconciler(session_factory, providers, side_effects, currency)


async def require_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict:
    """Verify the Bearer token and require the admin role; returns the claims."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    try:
        claims = decode_access_token(credentials.credentials)
    except JWTError as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {e}") from e

    if claims.get("role") != ADMIN_ROLE:
        raise HTTPException(status_code=403, detail="Requires admin role")
    return claims
