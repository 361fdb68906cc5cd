"""
FastAPI application entry point with application factory pattern.
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from meterhub.core.config import settings
from meterhub.core.exceptions import MeterHubError
from meterhub.core.logging import setup_logging, get_logger
from meterhub.core.metrics import errors_total
from meterhub.api.health import router as health_router
from meterhub.storage import PersistenceBackend, create_backend

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan events.
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    backend: PersistenceBackend = app.state.backend
    await backend.initialize()
    if backend.is_freshly_created:
        logger.info(f"Created new {backend.name} storage")

    yield

    # Shutdown
    logger.info("Shutting down application")
    await backend.close()


def create_app(backend: Optional[PersistenceBackend] = None) -> FastAPI:
    """
    Application factory function.

    Args:
        backend: Storage to serve from; built from settings when omitted
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Energy meter readings with power, energy and carbon queries",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.backend = backend or create_backend()

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MeterHubError)
    async def meterhub_exception_handler(request: Request, exc: MeterHubError):
        errors_total.labels(error_type=exc.code, endpoint=request.url.path).inc()
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            f"{type(exc).__name__}: {exc.message}",
            extra={"path": request.url.path, "method": request.method},
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "error": exc.code},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        errors_total.labels(error_type="internal_error", endpoint=request.url.path).inc()
        logger.error(
            f"Unhandled exception: {exc}",
            exc_info=exc,
            extra={"path": request.url.path, "method": request.method},
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    # Root endpoint
    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "redoc": "/redoc",
            "health": "/health",
            "api_v1": settings.API_V1_PREFIX,
        }

    # Include routers
    app.include_router(health_router, tags=["Health"])

    # Metrics endpoint
    from meterhub.api.v1.metrics import router as metrics_router
    app.include_router(metrics_router)

    # API v1 routers
    from meterhub.api.v1 import (
        users_router, sources_router, sensor_data_router, queries_router
    )

    app.include_router(users_router, prefix=settings.API_V1_PREFIX)
    app.include_router(sources_router, prefix=settings.API_V1_PREFIX)
    app.include_router(sensor_data_router, prefix=settings.API_V1_PREFIX)
    app.include_router(queries_router, prefix=settings.API_V1_PREFIX)

    # Middleware
    from meterhub.middleware.logging import LoggingMiddleware
    from meterhub.middleware.metrics import MetricsMiddleware

    if settings.ENABLE_METRICS:
        app.add_middleware(MetricsMiddleware)

    app.add_middleware(LoggingMiddleware)

    return app


# Create app instance
app = create_app()
