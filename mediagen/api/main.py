"""
FastAPI application setup with monitoring, rate limiting and error handling.
"""
import logging
from contextlib import asynccontextmanager
import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException
from prometheus_fastapi_instrumentator import Instrumentator

from mediagen.core.settings import settings
from mediagen.core.exceptions import (
    MediaGenException,
    mediagen_exception_handler,
    http_exception_handler,
    general_exception_handler,
)
from mediagen.core.monitoring.prometheus_metrics import metrics
from mediagen.core.monitoring.sentry_config import init_sentry
from mediagen.core.rate_limit import limiter
from mediagen.db.session import create_db_and_tables
from mediagen.worker.queue import SubmissionQueue

# Setup structured logging
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(settings.log_level.upper())
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and own the submission queue for the app's lifetime."""
    logger.info("mediagen API starting up", environment=settings.environment, version=settings.app_version)

    for issue in settings.validate_production_config():
        logger.warning("Production configuration issue", issue=issue)

    create_db_and_tables()

    queue = SubmissionQueue()
    await queue.start()
    app.state.submission_queue = queue

    logger.info("mediagen API started successfully")
    try:
        yield
    finally:
        await queue.stop()
        logger.info("mediagen API shutting down")


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""

    init_sentry("api")

    app = FastAPI(
        title="mediagen API",
        description="Credit-metered music, image and video generation",
        version=settings.app_version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # Add rate limiting state
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    setup_middleware(app)
    setup_monitoring(app)
    setup_exception_handlers(app)
    setup_routers(app)

    return app


def setup_middleware(app: FastAPI):
    """Setup application middleware."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )


def setup_monitoring(app: FastAPI):
    """Setup Prometheus monitoring."""
    if not settings.enable_metrics:
        return

    instrumentator = Instrumentator(
        should_group_status_codes=False,
        should_ignore_untemplated=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/metrics", "/health"],
        inprogress_name="mediagen_requests_inprogress",
        inprogress_labels=True,
    )
    instrumentator.instrument(app)

    @app.get("/metrics", include_in_schema=False)
    async def get_metrics():
        """Expose Prometheus metrics."""
        return metrics.get_metrics_response()


def setup_exception_handlers(app: FastAPI):
    """Setup exception handlers."""

    app.add_exception_handler(MediaGenException, mediagen_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors with the common error envelope."""
        logger.info("Validation error", path=request.url.path, method=request.method, errors=str(exc.errors()))
        return JSONResponse(
            status_code=422,
            content={
                "error": {
                    "message": "Input validation failed",
                    "type": "ValidationError",
                    "details": {"errors": jsonable_encoder(exc.errors())},
                    "status_code": 422
                }
            }
        )


def setup_routers(app: FastAPI):
    """Setup API routers."""

    from mediagen.api.routers import admin, credits, generation, webhooks

    app.include_router(generation.router, prefix="/api/v1")
    app.include_router(credits.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")
    app.include_router(webhooks.router, prefix="/api/v1")

    @app.get("/health")
    @limiter.limit("100/minute")
    async def health_check(request: Request):
        """Health check endpoint."""
        logger.debug("Health check requested", remote_addr=get_remote_address(request))
        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment
        }


# Create application instance
app = create_application()
