"""
OpenAI video (Sora) provider implementation.
"""
import asyncio
import aiohttp
from typing import Dict, Any, Optional
import structlog

from mediagen.core.config import TaskStatus
from mediagen.core.monitoring.prometheus_metrics import ProviderMetricsContext
from mediagen.core.settings import settings
from mediagen.db.models import ContentTask
from .base import (
    IProvider,
    ProviderResponse,
    ProviderError,
    ProviderTimeoutError,
    ProviderConnectionError,
    ProviderValidationError,
    map_provider_status,
)

logger = structlog.get_logger(__name__)

# Portrait frame sizes by quality
VIDEO_SIZES = {
    "hd": "1080x1920",
    "standard": "720x1280",
}


class OpenAIVideoProvider(IProvider):
    """OpenAI videos API: multipart create, JSON status."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.base_url = (base_url or settings.openai_video_url).rstrip("/")
        self.model = settings.openai_video_model

    @property
    def name(self) -> str:
        return "openai_video"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def submit(self, task: ContentTask) -> ProviderResponse:
        """Create a video job."""
        if not self.api_key:
            raise ProviderValidationError("API key is not configured", self.name)

        params = task.request_params or {}
        form = aiohttp.FormData()
        form.add_field("model", self.model)
        form.add_field("prompt", task.prompt)
        form.add_field("seconds", str(params.get("duration", 4)))
        form.add_field("size", VIDEO_SIZES.get(params.get("quality", "standard"), VIDEO_SIZES["standard"]))

        logger.info("Submitting video to provider", task_id=str(task.id), provider=self.name, model=self.model)

        try:
            with ProviderMetricsContext(self.name, "submit"):
                async with aiohttp.ClientSession() as session:
                    async with session.post(
                        self.base_url,
                        data=form,
                        headers=self._headers(),
                        timeout=aiohttp.ClientTimeout(total=settings.provider_timeout_seconds)
                    ) as response:
                        if response.status >= 400:
                            error_text = await response.text()
                            raise ProviderError(
                                f"Video submission failed: {response.status} - {error_text}",
                                self.name
                            )
                        result = await response.json()
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(f"Submission timed out: {e}", self.name)
        except aiohttp.ClientError as e:
            raise ProviderConnectionError(f"Failed to connect: {e}", self.name)
        except ValueError as e:
            raise ProviderValidationError(f"Malformed response body: {e}", self.name)

        remote_id = result.get("id") if isinstance(result, dict) else None
        if not remote_id:
            raise ProviderValidationError(f"Response carried no video id: {result!r}", self.name)

        try:
            progress = float(result.get("progress") or 0.0)
        except (TypeError, ValueError):
            progress = 0.0
        return ProviderResponse(
            remote_id=remote_id,
            status=map_provider_status(result.get("status")) or TaskStatus.QUEUED,
            progress=progress,
            message="Video submitted",
        )

    async def poll(self, remote_id: str) -> ProviderResponse:
        """Fetch video job status."""
        try:
            with ProviderMetricsContext(self.name, "poll"):
                async with aiohttp.ClientSession() as session:
                    async with session.get(
                        f"{self.base_url}/{remote_id}",
                        headers=self._headers(),
                        timeout=aiohttp.ClientTimeout(total=settings.provider_poll_timeout_seconds)
                    ) as response:
                        if response.status == 404:
                            return ProviderResponse(
                                remote_id=remote_id,
                                status=TaskStatus.FAILED,
                                message="Video not found at provider"
                            )
                        if response.status != 200:
                            raise ProviderError(
                                f"Failed to get video status: {response.status}",
                                self.name,
                                remote_id
                            )
                        result = await response.json()
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(f"Status poll timed out: {e}", self.name, remote_id)
        except aiohttp.ClientError as e:
            raise ProviderConnectionError(f"Failed to poll: {e}", self.name, remote_id)
        except ValueError as e:
            raise ProviderValidationError(f"Malformed status body: {e}", self.name, remote_id)

        if not isinstance(result, dict):
            raise ProviderValidationError(f"Unexpected status body: {result!r}", self.name, remote_id)
        try:
            return self._to_response(remote_id, result)
        except (TypeError, ValueError, AttributeError) as e:
            raise ProviderValidationError(f"Malformed status body: {e}", self.name, remote_id)

    def parse_webhook(self, payload: Dict[str, Any]) -> ProviderResponse:
        data = payload.get("data") or payload
        remote_id = data.get("id") or data.get("task_id")
        if not remote_id:
            raise ProviderValidationError("Webhook body carried no video id", self.name)
        return self._to_response(remote_id, data)

    def _to_response(self, remote_id: str, data: Dict[str, Any]) -> ProviderResponse:
        raw_status = data.get("status")
        status = map_provider_status(raw_status) or TaskStatus.PROCESSING
        metadata = {key: data[key] for key in ("size", "model") if data.get(key)}

        if status == TaskStatus.COMPLETED:
            return ProviderResponse(
                remote_id=remote_id,
                status=TaskStatus.COMPLETED,
                progress=100.0,
                message="Video completed",
                artifact_url=data.get("video_url") or f"{self.base_url}/{remote_id}/content",
                thumbnail_url=data.get("thumbnail_url"),
                duration_seconds=float(data["seconds"]) if data.get("seconds") else None,
                metadata=metadata,
            )

        if status == TaskStatus.FAILED:
            error = data.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else str(error)
            return ProviderResponse(
                remote_id=remote_id,
                status=TaskStatus.FAILED,
                message=message or f"Provider status: {raw_status}",
                metadata=metadata,
            )

        return ProviderResponse(
            remote_id=remote_id,
            status=status,
            progress=float(data.get("progress") or 0.0),
            message=f"Provider status: {raw_status}",
        )
