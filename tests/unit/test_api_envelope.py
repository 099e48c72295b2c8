"""Unit tests for API envelope helpers and error mapping."""

from datetime import datetime

import pytest
from flagengine.core.api_envelope import API_VERSION, ErrorCodes, error_response, success_response, validation_error_response
from flagengine.core.errors import (
    AuditWriteError,
    AuthenticationError,
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
)


class TestSuccessResponse:
    """Tests for success_response helper."""

    def test_basic_success_response(self):
        response = success_response({"enabled": True})

        assert response["success"] is True
        assert response["data"] == {"enabled": True}
        assert response["error"] is None
        assert response["metadata"]["version"] == API_VERSION

    def test_request_id_and_extra_metadata(self):
        response = success_response([], request_id="req-1", total=0)

        assert response["metadata"]["request_id"] == "req-1"
        assert response["metadata"]["total"] == 0

    def test_timestamp_format(self):
        """Timestamp is ISO 8601 with a Z suffix."""
        timestamp = success_response(None)["timestamp"]

        assert timestamp.endswith("Z")
        datetime.fromisoformat(timestamp.replace("Z", "+00:00"))


class TestErrorResponse:
    def test_error_response(self):
        response = error_response(
            code=ErrorCodes.CONFLICT,
            message="Feature flag 'dark-mode' was modified concurrently",
            details={"expected_version": 0, "current_version": 1},
            field="version",
        )

        assert response["success"] is False
        assert response["data"] is None
        assert response["error"] == {
            "code": "CONFLICT",
            "message": "Feature flag 'dark-mode' was modified concurrently",
            "details": {"expected_version": 0, "current_version": 1},
            "field": "version",
        }

    def test_validation_error_response(self):
        response = validation_error_response([{"field": "key", "message": "required"}])

        assert response["error"]["code"] == ErrorCodes.VALIDATION_ERROR
        assert response["error"]["details"]["errors"][0]["field"] == "key"


class TestErrorTaxonomy:
    @pytest.mark.parametrize(
        "error_class,status_code,code",
        [
            (NotFoundError, 404, ErrorCodes.NOT_FOUND),
            (InvalidArgumentError, 400, ErrorCodes.VALIDATION_ERROR),
            (ConflictError, 409, ErrorCodes.CONFLICT),
            (AuditWriteError, 500, ErrorCodes.AUDIT_WRITE_FAILED),
            (AuthenticationError, 401, ErrorCodes.UNAUTHORIZED),
            (PermissionDeniedError, 403, ErrorCodes.FORBIDDEN),
        ],
    )
    def test_status_and_code(self, error_class, status_code, code):
        error = error_class("boom", field="key")

        assert error.status_code == status_code
        assert error.code == code
        assert error.field == "key"
        assert str(error) == "boom"
