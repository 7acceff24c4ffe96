"""
FastAPI application entry point.
"""
import uuid
from contextlib import asynccontextmanager
from typing import Any, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from upload_gateway.api.files import router as files_router
from upload_gateway.api.uploads import router as uploads_router
from upload_gateway.core.config import Settings, get_settings
from upload_gateway.core.dependencies import build_services, get_client_identity
from upload_gateway.core.exceptions import (
    AppException,
    app_exception_handler,
    storage_exception_handler,
    unhandled_exception_handler,
)
from upload_gateway.core.logging import (
    bind_request_context,
    clear_request_context,
    configure_logging,
)
from upload_gateway.integrations.object_storage_client import ObjectStoreClient, StorageConfig
from upload_gateway.integrations.storage_exceptions import StorageError

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    settings: Settings = app.state.settings

    # Startup
    logger.info("application_starting", version=settings.app_version, environment=settings.environment)
    try:
        store = await ObjectStoreClient.connect(
            StorageConfig.from_settings(settings), s3_client=app.state.s3_client
        )
    except StorageError as e:
        logger.error("object_storage_connection_failed", error=str(e))
        raise
    app.state.services = build_services(settings, store)
    logger.info("object_storage_connection_successful", bucket=store.bucket)

    yield

    # Shutdown
    logger.info("application_shutting_down")
    await store.close()


def create_app(settings: Optional[Settings] = None, s3_client: Any = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings (process settings when omitted)
        s3_client: Pre-built boto3 S3 client, used instead of connecting

    Returns:
        FastAPI application
    """
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.s3_client = s3_client

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Correlation-ID", "Retry-After", "ETag"],
    )

    # Request logging middleware
    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        """Log all requests; method, path and client come from the bound context."""
        logger.info("request_started")

        response = await call_next(request)

        logger.info("request_completed", status_code=response.status_code)

        return response

    # Correlation ID middleware (outermost, so request logs carry the id)
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        """Add correlation ID to request and response headers and bind request context."""
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        request.state.correlation_id = correlation_id

        bind_request_context(
            correlation_id=correlation_id,
            client_id=get_client_identity(request, request.headers.get("X-Client-ID")),
            request_method=request.method,
            request_path=request.url.path,
        )
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    # Exception handlers
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(StorageError, storage_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Include routers
    app.include_router(uploads_router, prefix=settings.api_prefix)
    app.include_router(files_router, prefix=settings.api_prefix)

    # Root endpoint
    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "docs": "/api/docs",
            "redoc": "/api/redoc",
            "openapi": "/api/openapi.json"
        }

    # Health check endpoints
    @app.get("/health", tags=["Health"])
    async def health_check():
        """Basic health check."""
        return {
            "status": "healthy",
            "version": settings.app_version
        }

    @app.get(f"{settings.api_prefix}/health", tags=["Health"])
    async def detailed_health_check(request: Request):
        """Detailed health check with component status."""
        storage_healthy = False
        try:
            await request.app.state.services.store.head_bucket()
            storage_healthy = True
        except StorageError as e:
            logger.warning("health_check_storage_failed", error=str(e))

        return {
            "status": "healthy" if storage_healthy else "degraded",
            "version": settings.app_version,
            "components": {
                "object_storage": "healthy" if storage_healthy else "unhealthy"
            }
        }

    return app


app = create_app()


# Run with uvicorn for development
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "upload_gateway.main:app",
        host=get_settings().server_host,
        port=get_settings().server_port,
        reload=True,
        log_level=get_settings().log_level.lower()
    )
