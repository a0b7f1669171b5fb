"""
FastAPI application entry point for the DashForge API.

Configures logging, CORS, the version registry, the rate limiter, exception
handlers and API routers, and starts the ASGI server when run directly.

Storage:
    With DATABASE_URL set, dashboard versions live in PostgreSQL
    (PostgresSpecVersionRegistry). Without it the API runs on the in-memory
    registry, which loses every dashboard on restart.

Error envelope:
    Every failure is rendered as
        {"ok": false, "error": {"code", "message", "details"?}, "traceId"}
    with the HTTP status mapped from the error code, and the trace id echoed
    in the X-Trace-Id response header.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dashforge import __version__
from dashforge.api.dashboards import router as dashboards_router
from dashforge.api.insights import router as insights_router
from dashforge.core.config import get_settings
from dashforge.core.database import close_db, init_db, is_db_configured
from dashforge.core.dependencies import get_trace_id
from dashforge.core.errors import ServiceError, error_envelope, status_for
from dashforge.core.rate_limit import FixedWindowRateLimiter
from dashforge.models.enums import ErrorCode
from dashforge.services.version_store import InMemorySpecVersionRegistry, PostgresSpecVersionRegistry

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for FastAPI application startup and shutdown events.

    On startup:
        - Create the version registry (PostgreSQL when configured)
        - Create the rate limiter

    On shutdown:
        - Close the database connection pool
    """
    settings = get_settings()
    logger.info("DashForge API starting")

    if is_db_configured():
        pool = await init_db()
        registry = PostgresSpecVersionRegistry(pool)
        await registry.ensure_schema()
        app.state.registry = registry
        logger.info("Using PostgreSQL version registry")
    else:
        app.state.registry = InMemorySpecVersionRegistry()
        logger.warning("DATABASE_URL not set, using in-memory version registry")

    app.state.rate_limiter = FixedWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )

    yield

    logger.info("DashForge API shutting down")
    try:
        await close_db()
    except Exception as e:
        logger.error(f"Error closing database pool: {e}")


def register_exception_handlers(app: FastAPI) -> None:
    """Render every failure as an error envelope."""

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        trace_id = get_trace_id(request)
        if exc.status_code >= 500:
            logger.error(f"[{trace_id}] {exc.code.value}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(exc.code, exc.message, trace_id, exc.details),
            headers={"X-Trace-Id": trace_id},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        trace_id = get_trace_id(request)
        errors = [
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status_for(ErrorCode.VALIDATION_ERROR),
            content=error_envelope(
                ErrorCode.VALIDATION_ERROR, "Invalid request body", trace_id, {"errors": errors}
            ),
            headers={"X-Trace-Id": trace_id},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        trace_id = get_trace_id(request)
        logger.error(f"[{trace_id}] Unhandled error: {str(exc)}", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content=error_envelope(ErrorCode.INTERNAL_ERROR, "Internal server error", trace_id),
            headers={"X-Trace-Id": trace_id},
        )


def create_app() -> FastAPI:
    """Build the FastAPI application."""
    settings = get_settings()
    application = FastAPI(
        title="DashForge API",
        version=__version__,
        description=(
            "Versioned dashboard specifications edited through guarded JSON "
            "patches, with simulation, rollback, AI-proposed edits and "
            "validated rule-based insights."
        ),
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Trace-Id"],
    )

    @application.middleware("http")
    async def trace_id_header(request: Request, call_next):
        trace_id = get_trace_id(request)
        response = await call_next(request)
        response.headers.setdefault("X-Trace-Id", trace_id)
        return response

    register_exception_handlers(application)

    application.include_router(dashboards_router)
    application.include_router(insights_router)

    @application.get("/health")
    async def health_check():
        """
        Health check endpoint for monitoring and load balancer probes.

        Returns:
            Dict with status 'healthy' and the storage backend in use
        """
        return {
            "status": "healthy",
            "storage": "postgres" if is_db_configured() else "memory",
        }

    @application.get("/")
    async def root():
        """
        Root endpoint providing API information.

        Returns:
            Dict with API name and version
        """
        return {
            "name": "DashForge API",
            "version": __version__,
            "docs": "/docs",
            "openapi": "/openapi.json",
        }

    return application


app = create_app()


# Run with uvicorn when executed directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "dashforge.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
