"""
Generation service: price, authorize, record, submit.

Credits are not touched here. The task carries its estimated price and the
task tracker charges it once the provider reports completion.
"""
from typing import Optional, Tuple
from uuid import UUID
import structlog
from sqlmodel import Session

from mediagen.api.services.balance_guard import BalanceGuard
from mediagen.api.services.pricing import PricingService
from mediagen.api.services.tasks import TaskTracker
from mediagen.core.config import DEFAULT_PROVIDERS, PROVIDERS_BY_KIND, ContentKind, TaskStatus
from mediagen.core.exceptions import ExternalProviderError, MediaGenException, ValidationError
from mediagen.core.monitoring.sentry_config import capture_task_context
from mediagen.db.models import ContentTask, GenerationRequest
from mediagen.worker.providers import get_provider
from mediagen.worker.providers.base import ProviderError, ProviderResponse
from mediagen.worker.queue import SubmissionQueue

logger = structlog.get_logger(__name__)


class GenerationService:
    """Starts generation tasks at external providers."""

    @staticmethod
    def resolve_provider(kind: ContentKind, provider: Optional[str]) -> str:
        """Default the provider for a kind and reject providers that cannot serve it."""
        if provider is None:
            return DEFAULT_PROVIDERS[kind].value

        allowed = [name.value for name in PROVIDERS_BY_KIND[kind]]
        if provider not in allowed:
            raise ValidationError(
                f"Provider '{provider}' cannot generate {kind.value}",
                details={"allowed_providers": allowed},
            )
        return provider

    @staticmethod
    async def start_generation(
        session: Session,
        user_id: UUID,
        request: GenerationRequest,
        queue: Optional[SubmissionQueue] = None,
    ) -> Tuple[ContentTask, int]:
        """
        Start a generation and return the task with its estimated price.

        Raises InsufficientCreditsError before anything is recorded when the
        balance is short. Any failure before the provider hands back a task
        id marks the task failed without charging. Queue rejections keep
        their own status code; everything else becomes ExternalProviderError.
        """
        kind = ContentKind(request.kind)
        provider_name = GenerationService.resolve_provider(kind, request.provider)
        estimated_credits = PricingService.price(kind, provider_name, request.prompt)

        BalanceGuard.authorize(session, user_id, estimated_credits)

        task = TaskTracker.create_task(
            session,
            user_id=user_id,
            kind=kind.value,
            estimated_credits=estimated_credits,
            provider=provider_name,
            prompt=request.prompt,
            request_params=request.params,
            title=request.title or request.prompt[:50],
        )
        capture_task_context(str(task.id), user_id=str(user_id), provider=provider_name)

        provider = get_provider(provider_name)

        async def submit_job() -> ProviderResponse:
            return await provider.submit(task)

        try:
            if queue is not None and queue.is_running:
                response = await queue.submit(submit_job)
            else:
                response = await submit_job()
        except ProviderError as e:
            TaskTracker.mark_failed(session, task.id, e.message)
            logger.error(
                "Provider submission failed",
                task_id=str(task.id),
                provider=provider_name,
                error=e.message,
            )
            raise ExternalProviderError(
                provider_name,
                "Generation failed, credits not charged",
                task_id=str(task.id),
            )
        except MediaGenException as e:
            # Queue full or stopped: keep the status code for the client
            TaskTracker.mark_failed(session, task.id, e.message)
            logger.warning(
                "Generation not submitted",
                task_id=str(task.id),
                provider=provider_name,
                error=e.message,
                status_code=e.status_code,
            )
            raise
        except Exception as e:
            TaskTracker.mark_failed(session, task.id, f"Submission error: {e}")
            logger.error(
                "Unexpected error during provider submission",
                task_id=str(task.id),
                provider=provider_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ExternalProviderError(
                provider_name,
                "Generation failed, credits not charged",
                task_id=str(task.id),
            )

        task = TaskTracker.attach_external_id(session, task.id, response.remote_id)
        if response.status == TaskStatus.PROCESSING:
            TaskTracker.mark_processing(session, task.id, response.progress)
            session.refresh(task)

        logger.info(
            "Generation started",
            task_id=str(task.id),
            user_id=str(user_id),
            provider=provider_name,
            external_task_id=response.remote_id,
            estimated_credits=estimated_credits,
        )
        return task, estimated_credits
