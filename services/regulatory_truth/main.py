"""
Regulatory Truth Service - Main Application
===========================================

FastAPI application serving published rules, pipeline status and admin
triggers. Stage workers run in a separate process (scripts/run_pipeline.py).

Version: 0.1.0
"""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from services.regulatory_truth.container import build_container
from services.regulatory_truth.errors import (
    InvariantViolation,
    NotFoundError,
    PipelineError,
    TransientError,
    TransitionConflict,
)
from services.regulatory_truth.routes import admin, rules
from services.regulatory_truth.routes import status as status_routes
from shared.config import settings
from shared.database import DatabaseClient, KafkaClient, RedisClient
from shared.logging import get_logger, setup_logging
from shared.models import HealthResponse


# Setup logging
setup_logging(
    log_level=settings.log_level.value,
    json_logs=settings.is_production,
    service_name="regulatory-truth",
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """Application lifespan manager."""
    logger.info(
        "regulatory_truth_starting",
        environment=settings.environment.value,
        port=settings.ports.regulatory_truth,
    )

    # Startup
    try:
        DatabaseClient.get_engine()
        if settings.is_development:
            await DatabaseClient.create_schema()
        logger.info("database_connected")

        redis = RedisClient.get_client()
        logger.info("redis_connected")

        app.state.container = build_container(DatabaseClient.get_session_factory(), redis)

    except Exception as e:
        logger.error("startup_failed", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("regulatory_truth_shutting_down")
    await app.state.container.close()
    await KafkaClient.close()
    await RedisClient.close()
    await DatabaseClient.close()


# Create FastAPI application
app = FastAPI(
    title="Regulatory Truth Service",
    description="Evidence-backed, versioned compliance rules",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.origins_list,
    allow_credentials=settings.cors.allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Health Check Endpoints
# ============================================================================


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """
    Service health check.

    Returns health status of the service and its dependencies.
    """
    components: dict[str, dict[str, Any]] = {
        "database": await DatabaseClient.health_check(),
        "redis": await RedisClient.health_check(),
    }

    all_healthy = all(c.get("status") == "healthy" for c in components.values())

    return HealthResponse(
        status="healthy" if all_healthy else "degraded",
        service="regulatory-truth",
        version="0.1.0",
        components=components,
    )


@app.get("/", tags=["Health"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": "Regulatory Truth Service",
        "version": "0.1.0",
        "docs": "/docs",
    }


# ============================================================================
# Include Routers
# ============================================================================

app.include_router(
    rules.router,
    prefix="/api/v1/rules",
    tags=["Rules"],
)

app.include_router(
    status_routes.router,
    prefix="/api/v1/status",
    tags=["Status"],
)

app.include_router(
    admin.router,
    prefix="/api/v1/admin",
    tags=["Admin"],
)


# ============================================================================
# Error Handlers
# ============================================================================


def status_for(exc: PipelineError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, TransitionConflict):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, TransientError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, InvariantViolation):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    return status.HTTP_400_BAD_REQUEST


@app.exception_handler(PipelineError)
async def pipeline_exception_handler(request: Any, exc: PipelineError) -> JSONResponse:
    """Map pipeline errors onto HTTP status codes."""
    status_code = status_for(exc)
    logger.warning(
        "pipeline_exception",
        status_code=status_code,
        error=exc.message,
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": exc.message,
            "error_code": type(exc).__name__,
            "status_code": status_code,
        },
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Any, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions."""
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.detail,
            "status_code": exc.status_code,
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Any, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": "Internal server error",
            "status_code": 500,
        },
    )


# ============================================================================
# Run with Uvicorn
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.regulatory_truth.main:app",
        host="0.0.0.0",
        port=settings.ports.regulatory_truth,
        reload=settings.debug,
        log_level=settings.log_level.value.lower(),
    )
