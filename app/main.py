"""
Knowledge Vault Service - FastAPI Application Entry Point

Hosts the ingestion / compression / enrichment pipeline: builds the
service container, runs the enrichment worker pool for the lifetime of
the process and re-queues enrichment interrupted by a previous shutdown.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.exceptions import ItemNotFoundError, KnowledgeBaseError, ValidationError
from app.models.schemas import ErrorDetail, ErrorResponse
from app.services.background_tasks import requeue_stale_items
from app.services.container import get_container, reset_container

# Configure logging
LOG_FORMATS = {
    "text": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    "json": '{"time": "%(asctime)s", "logger": "%(name)s", "level": "%(levelname)s", "message": "%(message)s"}',
}
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format=LOG_FORMATS.get(settings.log_format, LOG_FORMATS["text"]),
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    - Startup: build services, start enrichment workers, re-queue items
      left in processing. Backend problems are logged, not fatal.
    - Shutdown: stop workers (unfinished ids are logged), close the
      shared database engine.
    """
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Debug mode: {settings.debug}")

    container = get_container()
    container.queue.start()

    try:
        requeued = await requeue_stale_items(container.repository, container.queue)
        logger.info(f"✅ Enrichment recovery: {requeued} item(s) re-queued")
    except Exception as e:
        logger.warning(f"⚠️ Enrichment recovery failed: {e} (service will continue)")

    if not settings.google_api_key:
        logger.warning("⚠️ GOOGLE_API_KEY not set: summaries and analysis will be skipped")

    logger.info(f"🚀 {settings.app_name} started successfully")

    yield

    logger.info(f"Shutting down {settings.app_name}...")

    try:
        await container.queue.stop()
    except Exception as e:
        logger.error(f"❌ Failed to stop enrichment queue: {e}")

    if settings.persistence_backend == "postgres":
        try:
            from app.core.database import close_shared_engine
            close_shared_engine()
            logger.info("✅ Shared database engine closed successfully")
        except Exception as e:
            logger.error(f"❌ Failed to close shared database engine: {e}")

    reset_container()
    logger.info(f"👋 {settings.app_name} shutdown complete")


def create_application() -> FastAPI:
    """
    Application factory pattern.
    Creates and configures the FastAPI application.
    """
    app = FastAPI(
        title=settings.app_name,
        description="Knowledge base ingestion, compression and AI enrichment service",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Register exception handlers
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(KnowledgeBaseError, knowledge_base_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include API routers
    from app.api.v1 import router as api_v1_router
    app.include_router(api_v1_router, prefix=settings.api_v1_prefix)

    return app


# =============================================================================
# Exception Handlers
# =============================================================================

async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors with HTTP 400."""
    errors = []
    for error in exc.errors():
        errors.append(
            ErrorDetail(
                field=".".join(str(loc) for loc in error["loc"]),
                message=error["msg"],
                code=error["type"],
            )
        )

    response = ErrorResponse(
        error="validation_error",
        message="Request validation failed",
        details=errors,
        request_id=request.headers.get("X-Request-ID"),
    )

    logger.warning(f"Validation error: {response.model_dump_json()}")

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=response.model_dump(mode="json"),
    )


async def knowledge_base_exception_handler(
    request: Request, exc: KnowledgeBaseError
) -> JSONResponse:
    """Map pipeline errors to HTTP status codes."""
    if isinstance(exc, ValidationError):
        status_code, error = status.HTTP_400_BAD_REQUEST, "validation_error"
    elif isinstance(exc, ItemNotFoundError):
        status_code, error = status.HTTP_404_NOT_FOUND, "not_found"
    else:
        status_code, error = status.HTTP_500_INTERNAL_SERVER_ERROR, type(exc).__name__
        logger.error(f"Pipeline error: {exc}")

    response = ErrorResponse(
        error=error,
        message=str(exc),
        request_id=request.headers.get("X-Request-ID"),
    )
    return JSONResponse(status_code=status_code, content=response.model_dump(mode="json"))


async def general_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Handle unexpected exceptions with HTTP 500."""
    logger.exception(f"Unexpected error: {exc}")

    response = ErrorResponse(
        error="internal_error",
        message="An unexpected error occurred" if not settings.debug else str(exc),
        request_id=request.headers.get("X-Request-ID"),
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=response.model_dump(mode="json"),
    )


# Create application instance
app = create_application()


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint - service information"""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }
