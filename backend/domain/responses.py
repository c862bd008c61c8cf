"""
Standard API response models and helpers for consistent response formatting.

- Success: { "success": true, "data": <payload>, "meta": {...} }
- Error: { "success": false, "error": { "code": "...", "message": "...", "details": {...} } }
"""
from typing import Any
from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Standard error detail structure."""
    code: str = Field(..., description="Error code (e.g., 'notfound', 'conflict')")
    message: str = Field(..., description="Human-readable error message")
    details: Any = Field(default=None, description="Additional error context")


class StandardErrorResponse(BaseModel):
    """Standard error response envelope."""
    success: bool = Field(False, description="Always false for errors")
    error: ErrorDetail = Field(..., description="Error details")


def error_body(code: str, message: str, details: Any = None) -> dict[str, Any]:
    return StandardErrorResponse(
        error=ErrorDetail(code=code, message=message, details=details or None)
    ).model_dump()


def success_response(data: Any, meta: dict[str, Any] | None = None) -> dict[str, Any]:
    """
    Create a standardized success response.

    Returns:
        dict: { "success": true, "data": <data>, "meta": <meta> }
    """
    response = {"success": True, "data": data}
    if meta:
        response["meta"] = meta
    return response


def paginated_response(items: list[Any], *, page: int, limit: int, total: int) -> dict[str, Any]:
    """Page-numbered listing envelope used by the admin order table."""
    pages = (total + limit - 1) // limit if limit else 0
    return success_response(
        data=items,
        meta={
            "page": page,
            "limit": limit,
            "total": total,
            "pages": pages,
            "hasMore": page < pages,
        },
    )
