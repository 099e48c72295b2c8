"""
Request ID middleware for request tracing.

Adds a correlation ID to every request. The ID is taken from the
X-Request-ID header when the client (or gateway) sends one, otherwise
generated, and then:
- stored on request.state for route handlers and the envelope metadata
- bound to the structlog context so every log line of the request carries it
- returned in the X-Request-ID response header
"""

import uuid
from typing import Callable

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def get_request_id(request: Request) -> str:
    """Request ID of the current request, or "unknown" outside the middleware."""
    return getattr(request.state, "request_id", "unknown")
