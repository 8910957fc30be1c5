"""
Standardized API Response Module

Provides consistent error formatting across all API endpoints.

RESPONSE FORMAT:
    Successful responses are plain pydantic models.

    Errors:
        {
            "error": {
                "code": "ERROR_CODE",
                "message": "Human-readable message",
                "details": {...}  # Optional extra context
            },
            "status": "error"
        }

Raw backend failures are never shown to users as-is; friendly_error_message()
turns them into short, user-facing text.
"""

from typing import Any, Optional

from fastapi import Request
from fastapi.exceptions import HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel


class ErrorDetail(BaseModel):
    """Structured error information."""
    code: str
    message: str
    details: Optional[dict[str, Any]] = None


# ============================================================================
# COMMON ERROR CODES
# ============================================================================

class ErrorCodes:
    """Standard error codes for API responses."""

    # Authentication errors (401)
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    INVALID_TOKEN = "INVALID_TOKEN"

    # Authorization errors (403)
    AUTHORIZATION_DENIED = "AUTHORIZATION_DENIED"
    INSUFFICIENT_ROLE = "INSUFFICIENT_ROLE"

    # Not found errors (404)
    NOT_FOUND = "NOT_FOUND"
    BUSINESS_NOT_FOUND = "BUSINESS_NOT_FOUND"
    SHOP_NOT_FOUND = "SHOP_NOT_FOUND"

    # Validation errors (422)
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Conflict errors (409)
    CONFLICT = "CONFLICT"
    PLAN_LIMIT_REACHED = "PLAN_LIMIT_REACHED"
    CONTEXT_UNAVAILABLE = "CONTEXT_UNAVAILABLE"

    # Server errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


_STATUS_CODES = {
    400: ErrorCodes.VALIDATION_ERROR,
    401: ErrorCodes.AUTHENTICATION_REQUIRED,
    403: ErrorCodes.AUTHORIZATION_DENIED,
    404: ErrorCodes.NOT_FOUND,
    409: ErrorCodes.CONFLICT,
    422: ErrorCodes.VALIDATION_ERROR,
}

DEFAULT_ERROR_MESSAGE = "Something went wrong. Please try again."


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def error_response(
    code: str,
    message: str,
    details: Optional[dict] = None,
) -> dict:
    """
    Create a standardized error response dict.
    """
    response = {
        "error": {
            "code": code,
            "message": message,
        },
        "status": "error",
    }
    if details:
        response["error"]["details"] = details
    return response


def friendly_error_message(error: BaseException, fallback: Optional[str] = None) -> str:
    """
    Convert any error into a user-friendly message.

    The raw exception text is inspected for well-known failure classes
    and never returned verbatim.
    """
    msg = str(error).lower()

    if "network" in msg or "fetch" in msg or "connect" in msg:
        return "Network error. Please check your connection and try again."
    if "unauthorized" in msg or "401" in msg:
        return "You are not authorized. Please log in again."
    if "forbidden" in msg or "403" in msg:
        return "Access denied. You do not have permission."
    if "not found" in msg or "404" in msg:
        return "The requested item was not found."
    if "bad request" in msg or "400" in msg:
        return "Invalid request. Please check your input."
    if "timeout" in msg or "timed out" in msg:
        return "Request timed out. Please try again."

    return fallback or DEFAULT_ERROR_MESSAGE


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render HTTPException in the standard error envelope."""
    if isinstance(exc.detail, dict) and "code" in exc.detail:
        body = error_response(
            exc.detail["code"],
            exc.detail.get("message", DEFAULT_ERROR_MESSAGE),
            exc.detail.get("details"),
        )
    else:
        code = _STATUS_CODES.get(exc.status_code, ErrorCodes.INTERNAL_ERROR)
        body = error_response(code, str(exc.detail))
    return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers)


async def context_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Render a ContextError (e.g. a request racing a sign-out) as 409.

    The client should reload its context and retry.
    """
    body = error_response(
        ErrorCodes.CONTEXT_UNAVAILABLE,
        "Your session changed. Please refresh and try again.",
    )
    return JSONResponse(status_code=409, content=body)
