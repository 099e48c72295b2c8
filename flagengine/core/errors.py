"""
Error taxonomy for the evaluation and governance engine.

Every error carries a machine-readable ``code`` (used in the API envelope) and
the HTTP status the REST layer maps it to:

- NotFoundError: unknown or archived flag key
- InvalidArgumentError: malformed key, out-of-range percentage, empty field
- ConflictError: duplicate key on create, version mismatch on update
- AuditWriteError: the audit append failed, the mutation was rolled back
"""

from typing import Any, Dict, Optional

from flagengine.core.api_envelope import ErrorCodes


class FlagEngineError(Exception):
    """Base class for engine errors."""

    code: str = ErrorCodes.INTERNAL_ERROR
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        self.field = field


class NotFoundError(FlagEngineError):
    code = ErrorCodes.NOT_FOUND
    status_code = 404


class InvalidArgumentError(FlagEngineError):
    code = ErrorCodes.VALIDATION_ERROR
    status_code = 400


class ConflictError(FlagEngineError):
    code = ErrorCodes.CONFLICT
    status_code = 409


class AuditWriteError(FlagEngineError):
    """Fatal: a mutation without its audit entry is never committed."""

    code = ErrorCodes.AUDIT_WRITE_FAILED
    status_code = 500


class AuthenticationError(FlagEngineError):
    """No actor identity on a request that needs one."""

    code = ErrorCodes.UNAUTHORIZED
    status_code = 401


class PermissionDeniedError(FlagEngineError):
    code = ErrorCodes.FORBIDDEN
    status_code = 403
