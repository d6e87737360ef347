"""
Celery tasks: the periodic reconciliation sweep.

Tasks whose provider never called back are found through their stored status
and external id, so a restart loses nothing that the sweep cannot recover.
"""
import asyncio
from datetime import timedelta
from typing import Dict, Optional
from celery import Celery
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
import structlog

from mediagen.api.services.reconciliation import ReconciliationService
from mediagen.core.settings import settings
from mediagen.db.session import engine

# Initialize Celery app
celery_app = Celery("mediagen_worker")
celery_app.conf.broker_url = settings.redis_url
celery_app.conf.result_backend = settings.redis_url
celery_app.conf.task_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.result_serializer = "json"
celery_app.conf.timezone = "UTC"
celery_app.conf.enable_utc = True
celery_app.conf.beat_schedule = {
    "poll-pending-tasks": {
        "task": "mediagen.worker.tasks.poll_pending_tasks",
        "schedule": float(settings.reconcile_interval_seconds),
    },
}

logger = structlog.get_logger(__name__)

# Pause before retrying a sweep that hit a database error
RETRY_DELAY_SECONDS = 30


async def _poll_pending_tasks(max_age_hours: Optional[int], limit: Optional[int]) -> Dict[str, int]:
    max_age = timedelta(hours=max_age_hours) if max_age_hours else None
    with Session(engine) as session:
        return await ReconciliationService.reconcile_pending(session, max_age=max_age, limit=limit)


@celery_app.task(bind=True, max_retries=3)
def poll_pending_tasks(self, max_age_hours: Optional[int] = None, limit: Optional[int] = None) -> Dict[str, int]:
    """Poll providers for every non-terminal task inside the reconcile window."""
    logger.info("Reconciliation sweep started", max_age_hours=max_age_hours or settings.reconcile_window_hours)
    try:
        return asyncio.run(_poll_pending_tasks(max_age_hours, limit))
    except SQLAlchemyError as e:
        logger.error(
            "Reconciliation sweep hit a database error, retrying",
            error=str(e),
            retry_attempt=self.request.retries + 1,
        )
        raise self.retry(countdown=RETRY_DELAY_SECONDS, exc=e)
