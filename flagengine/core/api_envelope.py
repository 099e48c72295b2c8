"""
Standard API response envelope for consistent responses across all endpoints.

All API responses use this envelope so the dashboard and other consumers can
handle success and failure the same way.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

API_VERSION = "1.0.0"


class APIEnvelope(BaseModel):
    """
    Standard API response envelope.

    Wraps all API responses in a consistent structure with metadata.
    """

    success: bool
    data: Optional[Any] = None
    error: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: str

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": True,
                "data": {"flagKey": "dark-mode", "userId": "alice", "enabled": True, "bucket": 37},
                "error": None,
                "metadata": {
                    "request_id": "550e8400-e29b-41d4-a716-446655440000",
                    "version": API_VERSION,
                },
                "timestamp": "2026-01-01T00:00:00.000Z",
            }
        }
    )


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def success_response(
    data: Any,
    request_id: Optional[str] = None,
    version: str = API_VERSION,
    **extra_metadata,
) -> Dict[str, Any]:
    """
    Create a successful API response.

    Args:
        data: Response data
        request_id: Request correlation ID
        version: API version
        extra_metadata: Additional metadata fields

    Returns:
        API envelope dictionary
    """
    metadata = {
        "version": version,
        **({"request_id": request_id} if request_id else {}),
        **extra_metadata,
    }

    return {
        "success": True,
        "data": data,
        "error": None,
        "metadata": metadata,
        "timestamp": _utc_timestamp(),
    }


def error_response(
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
    request_id: Optional[str] = None,
    version: str = API_VERSION,
    **extra_metadata,
) -> Dict[str, Any]:
    """
    Create an error API response.

    Args:
        code: Machine-readable error code (e.g., "CONFLICT")
        message: Human-readable error message
        details: Additional error details
        field: Field name if validation error
        request_id: Request correlation ID
        version: API version
        extra_metadata: Additional metadata fields

    Returns:
        API envelope dictionary
    """
    metadata = {
        "version": version,
        **({"request_id": request_id} if request_id else {}),
        **extra_metadata,
    }

    error = {"code": code, "message": message, "details": details, "field": field}

    return {
        "success": False,
        "data": None,
        "error": error,
        "metadata": metadata,
        "timestamp": _utc_timestamp(),
    }


def validation_error_response(
    errors: List[Dict[str, Any]],
    request_id: Optional[str] = None,
    version: str = API_VERSION,
) -> Dict[str, Any]:
    """
    Create a validation error response for multiple field errors.

    Args:
        errors: List of validation errors [{field, message}, ...]
        request_id: Request correlation ID
        version: API version

    Returns:
        API envelope dictionary
    """
    return error_response(
        code=ErrorCodes.VALIDATION_ERROR,
        message="One or more fields failed validation",
        details={"errors": errors},
        request_id=request_id,
        version=version,
    )


class ErrorCodes:
    """Standard error codes for consistent error handling."""

    # Authentication errors (401)
    UNAUTHORIZED = "UNAUTHORIZED"

    # Authorization errors (403)
    FORBIDDEN = "FORBIDDEN"

    # Validation errors (400)
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Resource errors (404)
    NOT_FOUND = "NOT_FOUND"

    # Conflict errors (409)
    CONFLICT = "CONFLICT"

    # Rate limiting (429)
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Server errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    AUDIT_WRITE_FAILED = "AUDIT_WRITE_FAILED"
