"""
Shared Response Schemas.

Every endpoint answers with the same envelope:
{success, message, data} on success, {success: false, message, error} on failure.
"""

from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Response envelope."""

    success: bool = True
    message: str = ""
    data: Optional[T] = None


class ErrorBody(BaseModel):
    """Error detail carried by a failed envelope."""

    type: str
    details: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    error: ErrorBody


class Page(BaseModel, Generic[T]):
    """Paginated list payload."""

    items: list[T]
    total: int
    page: int
    limit: int


def ok(data: Any = None, message: str = "OK") -> dict[str, Any]:
    """Build a success envelope from an already-serializable payload."""
    return ApiResponse[Any](success=True, message=message, data=data).model_dump(mode="json")
