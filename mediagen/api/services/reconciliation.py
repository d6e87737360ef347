"""
Reconciliation: bring provider task state into the task tracker.

Client polls, the periodic sweep and provider webhooks all end in
``apply_provider_state``, which calls the tracker's idempotent transitions.
"""
from datetime import timedelta
from typing import Any, Dict, Optional
import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from mediagen.api.services.tasks import SettlementResult, TaskTracker
from mediagen.core.config import TaskStatus
from mediagen.core.monitoring.prometheus_metrics import increment_provider_error
from mediagen.core.settings import settings
from mediagen.db.models import ContentTask
from mediagen.worker.providers import get_provider
from mediagen.worker.providers.base import IProvider, ProviderError, ProviderResponse

logger = structlog.get_logger(__name__)


class ReconciliationService:
    """Applies provider status reports to content tasks."""

    @staticmethod
    def apply_provider_state(
        session: Session,
        task: ContentTask,
        response: ProviderResponse,
    ) -> Optional[SettlementResult]:
        """
        Apply one provider status report.

        Returns the settlement result for terminal reports, None otherwise.
        """
        if response.status == TaskStatus.COMPLETED:
            return TaskTracker.mark_completed(
                session,
                task.id,
                artifact_url=response.artifact_url,
                metadata=response.metadata,
                thumbnail_url=response.thumbnail_url,
                duration_seconds=response.duration_seconds,
            )

        if response.status == TaskStatus.FAILED:
            return TaskTracker.mark_failed(session, task.id, response.message or "Provider reported failure")

        if response.status == TaskStatus.PROCESSING:
            TaskTracker.mark_processing(session, task.id, response.progress)

        return None

    @staticmethod
    async def reconcile_task(
        session: Session,
        task: ContentTask,
        provider: Optional[IProvider] = None,
    ) -> ContentTask:
        """
        Poll the provider for one task and apply the answer.

        Terminal tasks and tasks without an external id are returned as is.
        Provider errors leave the task untouched for the next attempt.
        """
        if task.is_terminal or not task.external_task_id:
            return task

        provider = provider or get_provider(task.provider)
        try:
            response = await provider.poll(task.external_task_id)
        except ProviderError as e:
            increment_provider_error(task.provider, type(e).__name__)
            logger.warning(
                "Provider poll failed",
                task_id=str(task.id),
                provider=task.provider,
                external_task_id=task.external_task_id,
                error=e.message,
            )
            return task

        ReconciliationService.apply_provider_state(session, task, response)
        session.refresh(task)
        return task

    @staticmethod
    async def reconcile_pending(
        session: Session,
        max_age: Optional[timedelta] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, int]:
        """Sweep non-terminal tasks inside the age window, newest first."""
        max_age = max_age or timedelta(hours=settings.reconcile_window_hours)
        limit = limit or settings.reconcile_batch_size
        tasks = TaskTracker.list_reconcilable(session, max_age, limit=limit)

        counts = {"checked": 0, "completed": 0, "failed": 0, "pending": 0, "errors": 0}
        for task in tasks:
            task_id, provider_name = task.id, task.provider
            counts["checked"] += 1
            try:
                task = await ReconciliationService.reconcile_task(session, task)
            except SQLAlchemyError:
                raise
            except Exception as e:
                # A broken task is counted and skipped; the sweep goes on
                session.rollback()
                increment_provider_error(provider_name, type(e).__name__)
                logger.error(
                    "Reconciling task failed",
                    task_id=str(task_id),
                    provider=provider_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                counts["errors"] += 1
                continue

            if task.status == TaskStatus.COMPLETED:
                counts["completed"] += 1
            elif task.status == TaskStatus.FAILED:
                counts["failed"] += 1
            else:
                counts["pending"] += 1

        logger.info("Reconciliation sweep finished", **counts)
        return counts

    @staticmethod
    def handle_provider_webhook(session: Session, provider_name: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply a verified provider push notification.

        Unknown external ids are acknowledged as ignored so the provider
        stops retrying.
        """
        provider = get_provider(provider_name)
        response = provider.parse_webhook(payload)

        task = TaskTracker.get_by_external_id(session, provider.name, response.remote_id)
        if task is None:
            logger.warning(
                "Webhook for unknown task ignored",
                provider=provider.name,
                external_task_id=response.remote_id,
            )
            return {"status": "ignored"}

        result = ReconciliationService.apply_provider_state(session, task, response)
        session.refresh(task)

        logger.info(
            "Provider webhook applied",
            task_id=str(task.id),
            provider=provider.name,
            reported_status=response.status.value,
            task_status=task.status,
            transitioned=result.transitioned if result else None,
        )
        return {"status": "ok", "processed": True, "task_status": task.status}
