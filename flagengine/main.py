"""
Main FastAPI application
"""

from typing import Optional

import uvicorn
from flagengine.api import audit, evaluation, flags, health, kill_switch, metrics
from flagengine.core.api_envelope import error_response, validation_error_response
from flagengine.core.config import settings
from flagengine.core.errors import FlagEngineError
from flagengine.core.logging import configure_logging, get_logger
from flagengine.core.request_id import RequestIDMiddleware, get_request_id
from flagengine.services.engine import FlagEngine
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

# Configure structured logging
configure_logging()
logger = get_logger(__name__)


async def flag_engine_error_handler(request: Request, exc: FlagEngineError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", code=exc.code, error=exc.message, path=request.url.path)
    else:
        logger.info("request_rejected", code=exc.code, error=exc.message, path=request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(
            code=exc.code,
            message=exc.message,
            details=exc.details,
            field=exc.field,
            request_id=get_request_id(request),
        ),
    )


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg"),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=validation_error_response(errors, request_id=get_request_id(request)),
    )


def create_app(flag_engine: Optional[FlagEngine] = None) -> FastAPI:
    """Build the application around ``flag_engine`` (one from settings by default)."""
    flag_engine = flag_engine or FlagEngine.from_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        description="""
    Feature flag evaluation and governance

    ## Features
    - Deterministic percentage rollouts with user targeting and exclusion
    - Emergency kill switches
    - Optimistic concurrency on flag updates
    - Immutable audit trail of every configuration change
    - Prometheus metrics and health endpoints
    """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.flag_engine = flag_engine

    # Rate limiting
    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.RATE_LIMIT_DEFAULT])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(FlagEngineError, flag_engine_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)

    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.ALLOWED_ORIGINS.split(",") if origin.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", evaluation.SNAPSHOT_VERSION_HEADER],
    )

    app.include_router(health.router, tags=["health"])
    app.include_router(metrics.router)
    app.include_router(flags.router)
    app.include_router(evaluation.router)
    app.include_router(audit.router)
    app.include_router(kill_switch.router)

    @app.on_event("startup")
    def startup_event():
        """Application startup tasks"""
        logger.info(
            "application_startup",
            app_name=settings.APP_NAME,
            version=settings.APP_VERSION,
            environment=settings.ENVIRONMENT,
            debug=settings.DEBUG,
        )
        app.state.flag_engine.start()

    @app.on_event("shutdown")
    def shutdown_event():
        """Application shutdown tasks"""
        logger.info("application_shutdown", app_name=settings.APP_NAME, version=settings.APP_VERSION)
        app.state.flag_engine.stop()

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "flagengine.main:app",
        host="0.0.0.0",  # nosec B104 - intentional for container deployment
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
    )
