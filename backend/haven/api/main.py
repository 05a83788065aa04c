"""
Haven - FastAPI Application
===========================

HTTP surface of the crisis engine: routers, crisis error mapping and the
background sweep scheduler.
"""

import re
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from haven import scheduler
from haven.api import cooling_off, crisis, safety_checks
from haven.core.config import settings
from haven.core.crisis import (
    AlreadyResolvedError,
    CoolingOffActiveError,
    CrisisError,
    CrisisStorageError,
    RecordNotFoundError,
)
from haven.core.database import close_db, init_db
from haven.core.schemas import ErrorResponse, HealthResponse

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if settings.is_production else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


# ==========================================================================
# Lifespan
# ==========================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Startup:
    - Initialize database
    - Start the crisis sweep scheduler

    Shutdown:
    - Stop the scheduler
    - Close database connections
    """
    logger.info("Starting Haven Crisis Engine", version=settings.APP_VERSION)

    await init_db()
    logger.info("Database initialized")

    if not settings.is_test:
        scheduler.start_scheduler()

    yield

    logger.info("Shutting down Haven Crisis Engine")
    scheduler.stop_scheduler()
    await close_db()
    logger.info("Database connections closed")


# ==========================================================================
# Error Mapping
# ==========================================================================

def _crisis_error_status(exc: CrisisError) -> int:
    if isinstance(exc, RecordNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (AlreadyResolvedError, CoolingOffActiveError)):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, CrisisStorageError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_400_BAD_REQUEST


def _error_code(exc: Exception) -> str:
    """CoolingOffActiveError -> COOLING_OFF_ACTIVE_ERROR"""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", type(exc).__name__).upper()


# ==========================================================================
# App Factory
# ==========================================================================

def create_app() -> FastAPI:
    """Build the app; called once at import time."""
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Haven - Crisis Detection & Intervention Engine",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )

    # ==========================================================================
    # Middleware
    # ==========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ==========================================================================
    # Exception Handlers
    # ==========================================================================

    @app.exception_handler(CrisisError)
    async def crisis_exception_handler(request: Request, exc: CrisisError) -> JSONResponse:
        """Map crisis engine errors to HTTP status codes."""
        status_code = _crisis_error_status(exc)
        if status_code >= 500:
            logger.error("Crisis storage error", error=str(exc), path=request.url.path)

        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(
                error=type(exc).__name__,
                detail=str(exc),
                code=_error_code(exc),
                retryable=exc.retryable,
            ).model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Anything unmapped becomes a 500 in the ErrorResponse shape."""
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
        )

        if settings.is_development:
            detail = str(exc)
        else:
            detail = "An unexpected error occurred"

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error="Internal Server Error",
                detail=detail,
                code="INTERNAL_ERROR",
            ).model_dump(mode="json"),
        )

    # ==========================================================================
    # Routers
    # ==========================================================================

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    async def health_check() -> HealthResponse:
        return HealthResponse(
            status="healthy",
            version=settings.APP_VERSION,
            environment=settings.ENVIRONMENT,
            database="sqlite" if settings.is_sqlite else "postgresql",
        )

    app.include_router(crisis.router, prefix=settings.API_V1_PREFIX)
    app.include_router(cooling_off.router, prefix=settings.API_V1_PREFIX)
    app.include_router(safety_checks.router, prefix=settings.API_V1_PREFIX)

    # ==========================================================================
    # Root Endpoint
    # ==========================================================================

    @app.get("/", tags=["Root"])
    async def root() -> dict:
        """Service info."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs" if settings.is_development else "Disabled in production",
            "health": "/health",
            "api": settings.API_V1_PREFIX,
        }

    return app


# ==========================================================================
# Application Instance
# ==========================================================================

app = create_app()


# ==========================================================================
# Development Server
# ==========================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "haven.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level="info",
    )
