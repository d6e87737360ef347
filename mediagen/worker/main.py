"""
Worker main entry point for background processing.
"""
import logging
import structlog
from mediagen.core.monitoring.sentry_config import init_sentry
from mediagen.core.settings import settings
from mediagen.worker.tasks import celery_app

# Initialize Sentry for worker
init_sentry("worker")

# Configure structured logging for worker
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

logger = structlog.get_logger(__name__)

if __name__ == '__main__':
    logger.info("Starting mediagen worker", reconcile_interval_seconds=settings.reconcile_interval_seconds)
    celery_app.start()
