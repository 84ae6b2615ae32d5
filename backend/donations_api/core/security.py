"""Admin authentication: credential check and HS256 access tokens."""

import hmac
import time

from jose import JWTError, jwt

from donations_api.core.config import settings

ALGORITHM = "HS256"
ADMIN_ROLE = "admin"


def verify_admin_credentials(username: str, password: str) -> bool:
    """Constant-time comparison against the configured admin account."""
    user_ok = hmac.compare_digest(username.encode(), settings.ADMIN_USERNAME.encode())
    pass_ok = hmac.compare_digest(password.encode(), settings.ADMIN_PASSWORD.encode())
    return user_ok and pass_ok


def create_access_token(sub: str, expires_in: int | None = None) -> str:
    expires_in = expires_in if expires_in is not None else settings.ACCESS_TOKEN_EXPIRE_SECONDS
    now = int(time.time())
    payload = {
        "sub": sub,
        "role": ADMIN_ROLE,
        "token_use": "access",
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Decode and verify an access token. Returns the claims dict."""
    claims = jwt.decode(
        token,
        settings.SECRET_KEY,
        algorithms=[ALGORITHM],
        options={"verify_aud": False, "verify_iss": False},
    )
    if claims.get("token_use") != "access":
        raise JWTError("Not an access token")
    return claims
