"""
FastAPI application entry point for mediaboard.

This module provides:
- FastAPI application setup with middleware
- CORS configuration for web clients
- Static serving of stored media
- Prometheus metrics endpoint
- Global exception handling
"""

# Load environment variables BEFORE any other imports
from pathlib import Path
from dotenv import load_dotenv

# Find and load .env file from project root
project_root = Path(__file__).parent.parent
env_file = project_root / ".env"
if env_file.exists():
    load_dotenv(env_file)

import time
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles

from .core.config import settings
from .core.logging import setup_logging, get_logger, with_logging_context
from .observability.metrics import metrics, get_metrics_response
from .media import ArtifactLayout
from .api.routes import router as api_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown tasks."""
    logger = get_logger("app.lifespan")

    # Startup
    logger.info("Starting mediaboard application")

    try:
        ArtifactLayout(settings.media.data_root).ensure_directories()
        logger.info("Data directories verified", data_root=settings.media.data_root)

        # Track application start
        metrics.app_info.info({
            'version': settings.app.version,
            'environment': settings.app.environment,
            'name': settings.app.app_name
        })

        logger.info("Application startup completed successfully")

    except Exception as e:
        logger.error("Failed to initialize application", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("Shutting down mediaboard application")


def create_application() -> FastAPI:
    """Create and configure FastAPI application."""

    # Initialize logging first
    setup_logging()
    logger = get_logger("app")

    layout = ArtifactLayout(settings.media.data_root)
    layout.ensure_directories()

    # Create FastAPI app
    app = FastAPI(
        title="mediaboard API",
        description="Media upload, preview and thumbnail pipeline for content boards",
        version=settings.app.version,
        debug=settings.app.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.app.is_development else None,
        redoc_url="/redoc" if settings.app.is_development else None
    )

    # Add middleware
    setup_middleware(app)

    # Add routes
    app.include_router(api_router, prefix="/api")

    # Stored media, served under the same public paths the API reports
    app.mount(f"/{layout.root.name}", StaticFiles(directory=layout.root), name="media")

    # Add metrics endpoint
    @app.get("/metrics", response_class=Response)
    async def metrics_endpoint():
        """Prometheus metrics endpoint."""
        content, headers = get_metrics_response()
        return Response(content=content, headers=headers)

    # Validation errors are reported as plain 400s
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle malformed request bodies."""
        get_logger("app.error").warning(
            "Request validation failed",
            path=request.url.path,
            errors=exc.errors(),
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid request", "detail": jsonable_errors(exc)},
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions."""
        logger = get_logger("app.error")

        with with_logging_context(request_id=getattr(request.state, 'request_id', None)):
            logger.error(
                "Unhandled exception in request",
                path=request.url.path,
                method=request.method,
                error=str(exc),
                exc_info=True
            )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": "An unexpected error occurred",
                "request_id": getattr(request.state, 'request_id', None)
            }
        )

    logger.info(
        "FastAPI application created",
        version=settings.app.version,
        environment=settings.app.environment,
        debug=settings.app.debug
    )

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Strip validation errors down to JSON-safe fields."""
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]


def endpoint_label(request: Request) -> str:
    """Route template for metrics labels; stored media share one label."""
    route = request.scope.get("route")
    if route is not None:
        return route.path
    if request.scope.get("endpoint") is not None:
        return "static"
    return "unmatched"


def setup_middleware(app: FastAPI):
    """Configure application middleware."""
    logger = get_logger("app.middleware")

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.cors_origin_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"]
    )

    # Request ID and logging middleware
    @app.middleware("http")
    async def logging_middleware(request: Request, call_next):
        """Add request ID and logging context."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()

        with with_logging_context(request_id=request_id):
            logger = get_logger("app.request")

            logger.info(
                "Request started",
                method=request.method,
                path=request.url.path,
                client_ip=request.client.host if request.client else None
            )

            try:
                response = await call_next(request)

                duration = time.time() - start_time

                logger.info(
                    "Request completed",
                    status_code=response.status_code,
                    duration_seconds=round(duration, 3)
                )

                metrics.track_request(
                    method=request.method,
                    endpoint=endpoint_label(request),
                    status_code=response.status_code,
                    duration=duration
                )

                response.headers["X-Request-ID"] = request_id

                return response

            except Exception as exc:
                duration = time.time() - start_time

                logger.error(
                    "Request failed with exception",
                    error=str(exc),
                    duration_seconds=round(duration, 3),
                    exc_info=True
                )

                metrics.track_request(
                    method=request.method,
                    endpoint=endpoint_label(request),
                    status_code=500,
                    duration=duration
                )

                raise

    logger.info("Middleware configuration completed")


# Create application instance
app = create_application()


def main():
    """Run the application with Uvicorn."""
    uvicorn.run(
        "mediaboard.main:app",
        host=settings.app.api_host,
        port=settings.app.api_port,
        workers=settings.app.api_workers,
        reload=settings.app.is_development,
        log_level=settings.app.log_level.lower(),
        access_log=True,
        server_header=False,
    )


if __name__ == "__main__":
    main()
