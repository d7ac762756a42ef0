"""
Authentication Utilities
JWT access tokens for clinic staff
Source: https://python-jose.readthedocs.io/en/latest/jwt/api.html
Verified: 2025-11-02

Tokens are issued by the clinic auth service; this service only verifies them.
`create_access_token` exists for service-to-service calls and tests.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from sha_claims.api.config import get_settings


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """
    Sign an access token carrying `sub`, `roles` and optionally `name`.

    The lifetime defaults to ACCESS_TOKEN_EXPIRE_MINUTES.
    """
    settings = get_settings()
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {**data, "exp": datetime.now(UTC) + lifetime, "type": "access"}
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict[str, Any] | None:
    """Verified token payload, or None for a bad signature, expiry or garbage."""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
