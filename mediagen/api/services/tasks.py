"""
Generation task tracker.

Maps a content task to its external provider task and settles credits exactly
once when the task reaches a terminal status. Terminal transitions are
conditional updates (``WHERE status NOT IN (completed, failed)``), so of two
concurrent deliveries only one affects a row and only that one settles.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID
import structlog
from sqlalchemy import update
from sqlmodel import Session, select

from mediagen.api.services.ledger import LedgerService
from mediagen.core.config import (
    RELATED_ENTITY_FOR_KIND,
    TERMINAL_STATUSES,
    ContentKind,
    DebitPolicy,
    TaskStatus,
)
from mediagen.core.exceptions import InsufficientCreditsError, TaskNotFoundError, ValidationError
from mediagen.core.monitoring.prometheus_metrics import increment_task_transition, observe_task_duration
from mediagen.core.settings import settings
from mediagen.core.timestamps import as_utc, utcnow
from mediagen.db.models import ContentTask, GalleryItem

logger = structlog.get_logger(__name__)

TERMINAL_VALUES = [status.value for status in TERMINAL_STATUSES]


@dataclass
class SettlementResult:
    """What a terminal transition did."""
    transitioned: bool
    task: ContentTask
    credits_charged: int = 0
    credits_refunded: int = 0
    balance_after: Optional[int] = None


class TaskTracker:
    """Content task lifecycle and credit settlement."""

    @staticmethod
    def create_task(
        session: Session,
        user_id: UUID,
        kind: str,
        estimated_credits: int,
        provider: str,
        prompt: str,
        request_params: Optional[Dict[str, Any]] = None,
        title: Optional[str] = None,
    ) -> ContentTask:
        """Persist a pending task before the provider is called."""
        task = ContentTask(
            user_id=user_id,
            kind=ContentKind(kind).value,
            provider=provider,
            prompt=prompt,
            title=title,
            request_params=request_params or {},
            status=TaskStatus.PENDING.value,
            credits_used=estimated_credits,
        )
        session.add(task)
        session.commit()
        session.refresh(task)

        increment_task_transition(task.kind, task.provider, TaskStatus.PENDING.value)
        logger.info(
            "Content task created",
            task_id=str(task.id),
            user_id=str(user_id),
            kind=task.kind,
            provider=provider,
            estimated_credits=estimated_credits,
        )
        return task

    @staticmethod
    def _reload(session: Session, task_id: UUID) -> ContentTask:
        statement = (
            select(ContentTask)
            .where(ContentTask.id == task_id)
            .execution_options(populate_existing=True)
        )
        task = session.exec(statement).first()
        if not task:
            raise TaskNotFoundError(str(task_id))
        return task

    @staticmethod
    def attach_external_id(session: Session, task_id: UUID, external_id: str) -> ContentTask:
        """Record the provider's task id and move a pending task to queued."""
        now = utcnow()
        result = session.execute(
            update(ContentTask)
            .where(ContentTask.id == task_id, ContentTask.status == TaskStatus.PENDING.value)
            .values(external_task_id=external_id, status=TaskStatus.QUEUED.value, updated_at=now)
        )
        session.commit()

        task = TaskTracker._reload(session, task_id)
        if result.rowcount == 0 and task.external_task_id != external_id:
            raise ValidationError(
                "Only pending tasks accept an external task id",
                details={"task_id": str(task_id), "status": task.status},
            )

        if result.rowcount:
            increment_task_transition(task.kind, task.provider, TaskStatus.QUEUED.value)
            logger.info(
                "External task attached",
                task_id=str(task_id),
                external_task_id=external_id,
                provider=task.provider,
            )
        return task

    @staticmethod
    def mark_processing(session: Session, task_id: UUID, progress: Optional[float] = None) -> bool:
        """
        Move a non-terminal task to processing.

        Returns False (and changes nothing) for terminal tasks.
        """
        values: Dict[str, Any] = {"status": TaskStatus.PROCESSING.value, "updated_at": utcnow()}
        if progress is not None:
            values["progress"] = max(0.0, min(float(progress), 100.0))

        result = session.execute(
            update(ContentTask)
            .where(ContentTask.id == task_id, ContentTask.status.not_in(TERMINAL_VALUES))
            .values(**values)
        )
        session.commit()

        if result.rowcount == 0:
            # Raises TaskNotFoundError when the id is unknown
            TaskTracker._reload(session, task_id)
            return False
        return True

    @staticmethod
    def mark_failed(session: Session, task_id: UUID, reason: str) -> SettlementResult:
        """
        Fail a non-terminal task.

        If credits were already deducted for it, a compensating refund is
        written in the same transaction.
        """
        now = utcnow()
        result = session.execute(
            update(ContentTask)
            .where(ContentTask.id == task_id, ContentTask.status.not_in(TERMINAL_VALUES))
            .values(
                status=TaskStatus.FAILED.value,
                error_message=reason,
                completed_at=now,
                updated_at=now,
            )
        )

        if result.rowcount == 0:
            session.rollback()
            task = TaskTracker._reload(session, task_id)
            logger.info("Task already terminal, failure ignored", task_id=str(task_id), status=task.status)
            return SettlementResult(transitioned=False, task=task)

        task = TaskTracker._reload(session, task_id)
        refunded = 0
        balance_after = None
        if task.credits_deducted and task.credits_used > 0:
            balance_after = LedgerService.credit(
                session,
                task.user_id,
                task.credits_used,
                description=f"Refund for failed {task.kind} generation",
                related_entity_id=str(task.id),
                related_entity_type=RELATED_ENTITY_FOR_KIND[ContentKind(task.kind)].value,
                idempotency_key=f"refund:{task.id}",
                commit=False,
            )
            refunded = task.credits_used
            task.credits_deducted = False
            session.add(task)

        session.commit()
        session.refresh(task)

        increment_task_transition(task.kind, task.provider, TaskStatus.FAILED.value)
        observe_task_duration(task.kind, task.provider, TaskStatus.FAILED.value, (now - as_utc(task.created_at)).total_seconds())
        logger.warning(
            "Content task failed",
            task_id=str(task_id),
            provider=task.provider,
            reason=reason,
            credits_refunded=refunded,
        )
        return SettlementResult(transitioned=True, task=task, credits_refunded=refunded, balance_after=balance_after)

    @staticmethod
    def mark_completed(
        session: Session,
        task_id: UUID,
        artifact_url: str,
        metadata: Optional[Dict[str, Any]] = None,
        thumbnail_url: Optional[str] = None,
        duration_seconds: Optional[float] = None,
    ) -> SettlementResult:
        """
        Complete a non-terminal task and settle its credits.

        The status change, the ledger debit, ``credits_deducted`` and the
        gallery item are committed together. Repeated or concurrent calls are
        no-ops reporting ``transitioned=False``.
        """
        now = utcnow()
        result = session.execute(
            update(ContentTask)
            .where(ContentTask.id == task_id, ContentTask.status.not_in(TERMINAL_VALUES))
            .values(
                status=TaskStatus.COMPLETED.value,
                artifact_url=artifact_url,
                thumbnail_url=thumbnail_url,
                duration_seconds=duration_seconds,
                result_metadata=metadata or {},
                progress=100.0,
                completed_at=now,
                updated_at=now,
            )
        )

        if result.rowcount == 0:
            session.rollback()
            task = TaskTracker._reload(session, task_id)
            logger.info("Task already terminal, completion ignored", task_id=str(task_id), status=task.status)
            return SettlementResult(transitioned=False, task=task)

        task = TaskTracker._reload(session, task_id)
        task.generation_time_seconds = int((now - as_utc(task.created_at)).total_seconds())

        charged = 0
        balance_after = None
        if not task.credits_deducted and task.credits_used > 0:
            available = LedgerService.get_balance(session, task.user_id, for_update=True)
            try:
                balance_after = LedgerService.debit(
                    session,
                    task.user_id,
                    task.credits_used,
                    description=f"{task.kind.capitalize()} generation ({task.provider})",
                    related_entity_id=str(task.id),
                    related_entity_type=RELATED_ENTITY_FOR_KIND[ContentKind(task.kind)].value,
                    policy=DebitPolicy(settings.settlement_debit_policy),
                    idempotency_key=f"settle:{task.id}",
                    commit=False,
                )
            except InsufficientCreditsError as e:
                session.rollback()
                logger.warning(
                    "Settlement rejected by strict debit policy",
                    task_id=str(task_id),
                    required=e.required,
                    available=e.available,
                )
                return TaskTracker.mark_failed(session, task_id, "Insufficient credits at settlement")
            charged = available - balance_after
            task.credits_deducted = True

        session.add(task)
        session.add(
            GalleryItem(
                user_id=task.user_id,
                task_id=task.id,
                kind=task.kind,
                title=task.title,
                artifact_url=artifact_url,
                thumbnail_url=thumbnail_url,
            )
        )
        session.commit()
        session.refresh(task)

        increment_task_transition(task.kind, task.provider, TaskStatus.COMPLETED.value)
        observe_task_duration(task.kind, task.provider, TaskStatus.COMPLETED.value, float(task.generation_time_seconds))
        logger.info(
            "Content task completed",
            task_id=str(task_id),
            provider=task.provider,
            artifact_url=artifact_url,
            credits_charged=charged,
            balance_after=balance_after,
        )
        return SettlementResult(transitioned=True, task=task, credits_charged=charged, balance_after=balance_after)

    @staticmethod
    def get_task(session: Session, task_id: UUID, user_id: Optional[UUID] = None) -> ContentTask:
        """Get a task, optionally scoped to its owner."""
        task = session.get(ContentTask, task_id)
        if not task or (user_id is not None and task.user_id != user_id):
            raise TaskNotFoundError(str(task_id))
        return task

    @staticmethod
    def get_by_external_id(session: Session, provider: Optional[str], external_id: str) -> Optional[ContentTask]:
        """Look a task up by the provider's correlation id."""
        statement = select(ContentTask).where(ContentTask.external_task_id == external_id)
        if provider is not None:
            statement = statement.where(ContentTask.provider == provider)
        return session.exec(statement).first()

    @staticmethod
    def list_user_tasks(
        session: Session,
        user_id: UUID,
        skip: int = 0,
        limit: int = 20,
        kind: Optional[str] = None,
    ) -> List[ContentTask]:
        """Get user's tasks with pagination, newest first."""
        statement = select(ContentTask).where(ContentTask.user_id == user_id)
        if kind is not None:
            statement = statement.where(ContentTask.kind == ContentKind(kind).value)
        statement = statement.order_by(ContentTask.created_at.desc()).offset(skip).limit(limit)
        return list(session.exec(statement).all())

    @staticmethod
    def list_reconcilable(
        session: Session,
        max_age: timedelta,
        limit: Optional[int] = None,
    ) -> List[ContentTask]:
        """Non-terminal tasks with an external id created within ``max_age``, newest first."""
        cutoff = utcnow() - max_age
        statement = (
            select(ContentTask)
            .where(
                ContentTask.status.not_in(TERMINAL_VALUES),
                ContentTask.external_task_id.is_not(None),
                ContentTask.created_at >= cutoff,
            )
            .order_by(ContentTask.created_at.desc())
        )
        if limit is not None:
            statement = statement.limit(limit)
        return list(session.exec(statement).all())
