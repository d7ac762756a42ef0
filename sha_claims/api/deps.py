"""
FastAPI Dependencies
Authentication, role checks and access to the service container
Source: https://fastapi.tiangolo.com/tutorial/dependencies/
Verified: 2025-11-02
"""

from collections.abc import Callable, Coroutine
from typing import Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ValidationError

from sha_claims.core.enums import UserRole
from sha_claims.services.container import ServiceContainer
from sha_claims.utils.auth import decode_token
from sha_claims.utils.errors import AuthenticationError, PermissionDeniedError

# HTTP Bearer token security scheme
# Source: https://swagger.io/docs/specification/authentication/bearer-authentication/
security = HTTPBearer(auto_error=False)


class TokenClaims(BaseModel):
    """Verified identity of the caller."""

    sub: str
    name: str | None = None
    roles: list[UserRole] = []

    @property
    def user_id(self) -> str:
        return self.sub


def get_container(request: Request) -> ServiceContainer:
    """Service container built during application startup."""
    return request.app.state.container


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> TokenClaims:
    """
    Get the current caller from the bearer token.

    Raises:
        AuthenticationError: Missing, invalid or non-access token
    """
    if credentials is None:
        raise AuthenticationError("Not authenticated")

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError("Invalid token")

    if payload.get("type") != "access":
        raise AuthenticationError("Invalid token type")

    try:
        return TokenClaims.model_validate(payload)
    except ValidationError as err:
        raise AuthenticationError("Invalid token payload") from err


def require_roles(
    *roles: UserRole,
) -> Callable[..., Coroutine[Any, Any, TokenClaims]]:
    """
    Dependency factory allowing only callers holding one of `roles`.

    Admins pass every check.
    """
    allowed = set(roles) | {UserRole.ADMIN}

    async def checker(user: TokenClaims = Depends(get_current_user)) -> TokenClaims:
        if not allowed.intersection(user.roles):
            raise PermissionDeniedError(
                f"Requires one of: {', '.join(sorted(r.value for r in allowed))}"
            )
        return user

    return checker


# Role groups used by the routers
STAFF_ROLES = (
    UserRole.CLAIMS_MANAGER,
    UserRole.CLINICAL_OFFICER,
    UserRole.RECEPTIONIST,
)
require_staff = require_roles(*STAFF_ROLES)
require_claims_manager = require_roles(UserRole.CLAIMS_MANAGER)
require_clinical = require_roles(UserRole.CLAIMS_MANAGER, UserRole.CLINICAL_OFFICER)
