"""
Generation router: start generations and follow their progress.
"""
import structlog
from uuid import UUID
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request, status
from sqlmodel import Session

from mediagen.api.services.generation import GenerationService
from mediagen.api.services.reconciliation import ReconciliationService
from mediagen.api.services.tasks import TaskTracker
from mediagen.core.config import ContentKind
from mediagen.core.rate_limit import limiter
from mediagen.core.security import SessionUser, get_current_user
from mediagen.db.models import (
    ContentTaskRead,
    GenerationRequest,
    GenerationResponse,
    TaskStatusResponse,
)
from mediagen.db.session import get_session

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/generations", tags=["generations"])


@router.post("", response_model=GenerationResponse, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit("30/minute")
async def create_generation(
    request: Request,
    generation: GenerationRequest,
    current_user: SessionUser = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """
    Start a generation at the provider.

    Credits are checked now and charged when the provider reports completion.
    """
    logger.info(
        "Generation request",
        user_id=str(current_user.user_id),
        kind=generation.kind.value,
        provider=generation.provider,
    )

    queue = getattr(request.app.state, "submission_queue", None)
    task, estimated_credits = await GenerationService.start_generation(
        session, current_user.user_id, generation, queue=queue
    )

    return GenerationResponse(
        task_id=task.id,
        status=task.status,
        kind=task.kind,
        provider=task.provider,
        estimated_credits=estimated_credits,
        external_task_id=task.external_task_id,
    )


@router.get("", response_model=List[ContentTaskRead])
async def list_generations(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    kind: Optional[ContentKind] = None,
    current_user: SessionUser = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """List the user's generation tasks, newest first."""
    return TaskTracker.list_user_tasks(session, current_user.user_id, skip=skip, limit=limit, kind=kind)


@router.get("/{task_id}", response_model=ContentTaskRead)
async def get_generation(
    task_id: UUID,
    current_user: SessionUser = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Get one generation task."""
    return TaskTracker.get_task(session, task_id, user_id=current_user.user_id)


@router.get("/{task_id}/status", response_model=TaskStatusResponse)
@limiter.limit("120/minute")
async def get_generation_status(
    request: Request,
    task_id: UUID,
    current_user: SessionUser = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Poll a task, asking the provider for news while it is still running."""
    task = TaskTracker.get_task(session, task_id, user_id=current_user.user_id)
    task = await ReconciliationService.reconcile_task(session, task)

    return TaskStatusResponse(
        task_id=task.id,
        status=task.status,
        progress=task.progress,
        artifact_url=task.artifact_url,
        thumbnail_url=task.thumbnail_url,
        credits_used=task.credits_used,
        credits_deducted=task.credits_deducted,
        error_message=task.error_message,
        created_at=task.created_at,
        completed_at=task.completed_at,
    )
