"""Admin login."""

import logging

from fastapi import APIRouter, HTTPException

from donations_api.core.config import settings
from donations_api.core.security import create_access_token, verify_admin_credentials
from donations_api.schemas.auth import TokenRequest, TokenResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/token", response_model=TokenResponse)
async def issue_token(body: TokenRequest) -> TokenResponse:
    """Exchange the admin username and password for a bearer token."""
    if not verify_admin_credentials(body.username, body.password):
        logger.warning("Failed admin login for %r", body.username)
        raise HTTPException(status_code=401, detail="Invalid username or password")

    return TokenResponse(
        access_token=create_access_token(body.username),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_SECONDS,
    )
