"""Shared error definitions for the gateway.

Maps HTTP status codes to OpenAI-style error types, and builds the error
bodies each dialect expects.
"""

from __future__ import annotations

from typing import Any

# Error type mapping from HTTP status to OpenAI error type
ERROR_TYPE_MAP = {
    400: "invalid_request_error",
    401: "authentication_error",
    403: "permission_error",
    404: "not_found_error",
    405: "invalid_request_error",
    413: "invalid_request_error",
    429: "rate_limit_error",
    500: "api_error",
    502: "api_error",
    503: "api_error",
    504: "api_error",
}


def native_error_body(message: str) -> dict[str, Any]:
    """Error body in the backend's own shape: {"error": "..."}."""
    return {"error": message}


def openai_error_body(message: str, status: int) -> dict[str, Any]:
    """Error body in the OpenAI shape."""
    return {
        "error": {
            "message": message,
            "type": ERROR_TYPE_MAP.get(status, "api_error"),
            "code": status,
        }
    }
