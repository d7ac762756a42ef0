"""
HTTP Errors
Failures raised by the API's auth dependencies before any service runs
Source: https://fastapi.tiangolo.com/tutorial/handling-errors/
Verified: 2025-11-02

Business-rule failures use the ClaimsWorkflowError taxonomy in
sha_claims.core.exceptions instead. Both render through the same envelope.
"""

from fastapi import HTTPException, status


class AuthenticationError(HTTPException):
    """Missing, expired or malformed bearer token (401)."""

    def __init__(self, detail: str = "Not authenticated"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class PermissionDeniedError(HTTPException):
    """Caller holds none of the roles an endpoint requires (403)."""

    def __init__(self, detail: str = "Insufficient role"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
