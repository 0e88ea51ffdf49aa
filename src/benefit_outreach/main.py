"""FastAPI application entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from benefit_outreach import __version__
from benefit_outreach.api import health, outreach, webhooks
from benefit_outreach.config import Settings, get_settings, require_valid_settings
from benefit_outreach.core.exceptions import OutreachError
from benefit_outreach.core.log_setup import get_logger, setup_logging
from benefit_outreach.db.session import close_db, get_session_factory, init_db
from benefit_outreach.services.messaging_factory import ClientCache
from benefit_outreach.services.scheduler import OutreachScheduler
from benefit_outreach.services.sequence_engine import TenantTickGuard

log = get_logger(__name__)


def outreach_exception_handler(request: Request, exc: OutreachError) -> JSONResponse:
    """Render domain errors with their own status code."""
    if exc.status_code >= 500:
        log.error("Request failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": _status_code_to_error_type(exc.status_code),
            "message": str(exc.detail),
        },
    )


def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Structured response for request validation failures."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        errors.append({
            "field": field or "request",
            "message": error["msg"],
            "type": error["type"],
        })

    return JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "message": "Request validation failed",
            "details": errors,
        },
    )


def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected errors and hide details outside debug mode."""
    log.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
    )

    detail = str(exc) if get_settings().debug else "An internal error occurred"
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "message": detail},
    )


def _status_code_to_error_type(status_code: int) -> str:
    error_types = {
        400: "bad_request",
        403: "forbidden",
        404: "not_found",
        405: "method_not_allowed",
        409: "conflict",
        422: "validation_error",
        500: "internal_error",
    }
    return error_types.get(status_code, "error")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings: Settings = app.state.settings

    setup_logging(level=settings.log_level, json_output=settings.log_json)
    log.info("Starting benefit outreach", version=__version__, environment=settings.environment)

    await init_db()
    log.info("Database initialized")

    scheduler: OutreachScheduler | None = None
    if settings.scheduler.enabled:
        scheduler = OutreachScheduler(
            get_session_factory(),
            settings,
            cache=app.state.client_cache,
            guard=app.state.tick_guard,
        )
        await scheduler.start()
    app.state.scheduler = scheduler

    yield

    if scheduler:
        await scheduler.stop()
    await app.state.client_cache.close()
    await close_db()
    log.info("Benefit outreach stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Benefit Outreach",
        description="Insurance benefit expiration outreach for dental practices",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    app.state.settings = settings
    app.state.client_cache = ClientCache(settings.messaging.client_cache_ttl_seconds)
    app.state.tick_guard = TenantTickGuard()
    app.state.scheduler = None

    # Exception handlers (most specific first)
    app.add_exception_handler(OutreachError, outreach_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(health.router)
    app.include_router(outreach.router)
    app.include_router(webhooks.router)

    return app


app = create_app()


def run() -> None:
    """Run the application with uvicorn."""
    import uvicorn

    settings = require_valid_settings()
    uvicorn.run(
        "benefit_outreach.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
