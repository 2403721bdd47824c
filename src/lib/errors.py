"""
Centralized Error Response Builder for the Funnel Recovery Engine.

Provides consistent error codes and messages for the webhook, trigger
and reporting endpoints. The builder returns structured error dicts that
the API wraps as ``{"error": {...}}``.
"""

from __future__ import annotations

from typing import Any

# =============================================================================
# Error Code Constants
# =============================================================================

NOT_FOUND = "NOT_FOUND"
VALIDATION_ERROR = "VALIDATION_ERROR"
INTERNAL_ERROR = "INTERNAL_ERROR"
STORE_UNAVAILABLE = "STORE_UNAVAILABLE"

_ERROR_MESSAGES: dict[str, str] = {
    NOT_FOUND: "The requested resource was not found.",
    VALIDATION_ERROR: "Invalid input. Please check your request.",
    INTERNAL_ERROR: "An internal error occurred. Please try again.",
    STORE_UNAVAILABLE: "The record store is unavailable. Please retry later.",
}


# =============================================================================
# Error Response Builder
# =============================================================================


def get_error_message(code: str) -> str:
    """
    Get the default message for an error code.

    Falls back to a generic message if the error code is unknown.
    """
    return _ERROR_MESSAGES.get(code, "An error occurred.")


def build_error_response(
    code: str,
    message: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Build a structured error response dict.

    Args:
        code: Error code constant (e.g. NOT_FOUND, VALIDATION_ERROR)
        message: Optional override message (bypasses the default lookup)
        details: Optional additional error details

    Returns:
        Structured error dict: {"code": str, "message": str, "details": dict | None}
    """
    resolved_message = message if message is not None else get_error_message(code)
    error: dict[str, Any] = {
        "code": code,
        "message": resolved_message,
    }
    if details is not None:
        error["details"] = details
    return error


__all__ = [
    "NOT_FOUND",
    "VALIDATION_ERROR",
    "INTERNAL_ERROR",
    "STORE_UNAVAILABLE",
    "get_error_message",
    "build_error_response",
]
