import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from repo_registry.api.routes.health import router as health_router
from repo_registry.api.routes.repositories import router as repositories_router
from repo_registry.core.config import AppEnvironment, settings
from repo_registry.core.db import reset_async_engine
from repo_registry.core.errors import RepoRegistryError, get_status_code
from repo_registry.core.observability import (
    ObservabilityMiddleware,
    configure_structured_logging,
    extract_request_context,
    metrics_endpoint,
)

# Configure structured logging before creating logger
if settings.observability_structured_logs:
    configure_structured_logging(settings.app_log_level)

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s (%s)", settings.app_name, settings.app_env.value)
    yield
    await reset_async_engine()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Sets up:
    - Structured logging with correlation IDs
    - Observability middleware (metrics, request tracking)
    - Exception handlers for domain errors
    - API routers
    - Metrics endpoint for Prometheus scraping
    """
    app = FastAPI(
        title="Repository Registry API",
        description="Read-only query API over the repository registry",
        version="0.1.0",
        lifespan=lifespan,
    )

    # ============================================================================
    # Observability Middleware
    # ============================================================================

    if settings.observability_enabled:
        app.add_middleware(ObservabilityMiddleware)

    # ============================================================================
    # Exception Handlers
    # ============================================================================

    @app.exception_handler(RepoRegistryError)
    async def repo_registry_error_handler(
        request: Request, exc: RepoRegistryError
    ) -> JSONResponse:
        """
        Map domain exceptions to HTTP status codes and structured error bodies.

        Args:
            request: The incoming request
            exc: The domain exception raised

        Returns:
            JSON response with error details
        """
        status_code = get_status_code(exc)

        context = {
            "details": exc.details,
            "path": request.url.path,
            **extract_request_context(request),
        }

        if status_code >= 500:
            logger.error("%s: %s", exc.__class__.__name__, exc.message, extra=context)
        else:
            logger.warning("%s: %s", exc.__class__.__name__, exc.message, extra=context)

        details = exc.details if settings.app_env != AppEnvironment.PROD else {}
        return JSONResponse(
            status_code=status_code,
            content={
                "error": exc.__class__.__name__,
                "message": exc.message,
                "details": details,
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Catch-all handler for unexpected exceptions.

        Logs the full exception and returns a generic 500 error to the client
        without exposing internal implementation details.
        """
        context = {
            "path": request.url.path if request.url else "unknown",
            **extract_request_context(request),
        }
        logger.error("Unhandled exception: %s", exc, exc_info=True, extra=context)

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "InternalServerError",
                "message": "An unexpected error occurred",
                "details": {},
            },
        )

    # ============================================================================
    # Router Registration
    # ============================================================================

    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(repositories_router, prefix=API_PREFIX)

    # ============================================================================
    # Metrics Endpoint (Prometheus)
    # ============================================================================

    async def metrics(request: Request):
        return metrics_endpoint()

    if settings.observability_enabled:
        app.add_route("/metrics", metrics)

    return app


app = create_app()
