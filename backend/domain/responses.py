"""
Standard API error envelope used by the exception handlers.

Error: { "success": false, "message": "...", "error": { "code": "...", "message": "...", "details": {...} } }

The top-level "message" mirrors error.message for clients that only read
the flat `{message}` shape.
"""
from typing import Any
from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Standard error detail structure."""
    code: str = Field(..., description="Error code (e.g., 'order_not_found', 'invalid_tier')")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] | None = Field(default=None, description="Additional error context")


class StandardErrorResponse(BaseModel):
    """Standard error response envelope."""
    success: bool = Field(False, description="Always false for errors")
    message: str = Field(..., description="Human-readable error message")
    error: ErrorDetail = Field(..., description="Error details")


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """
    Create a standardized error body.

    Args:
        code: Stable machine-readable error code
        message: Human-readable message
        details: Optional extra context

    Returns:
        dict: { "success": false, "message": <message>, "error": {...} }
    """
    return StandardErrorResponse(
        message=message,
        error=ErrorDetail(code=code, message=message, details=details),
    ).model_dump()
