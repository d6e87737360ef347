"""
PiAPI / GoAPI unified task API providers (Suno, Diffrhythm, image models).

All models share one envelope: ``POST /task`` returns
``{"code": 200, "data": {"task_id": ...}}`` and ``GET /task/{id}`` returns
``{"data": {"status", "output", "error"}}``.
"""
import asyncio
import math
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

# Song length the Diffrhythm timestamps are spread over
DIFFRHYTHM_SONG_SECONDS = 180
MIN_SONG_SECONDS = 10


def format_timestamped_lyrics(text: str, total_seconds: int = DIFFRHYTHM_SONG_SECONDS) -> str:
    """Prefix each non-empty line with an evenly spaced ``[mm:ss.00]`` timestamp."""
    lines = [line.strip() for line in text.split("\n") if line.strip()]
    if not lines:
        return ""

    step = total_seconds / len(lines)
    formatted = []
    for index, line in enumerate(lines):
        current = int(index * step)
        formatted.append(f"[{current // 60:02d}:{current % 60:02d}.00] {line}")
    return "\n".join(formatted)


class PiAPITaskProvider(IProvider):
    """Shared client for the PiAPI task API. Subclasses supply model payloads."""

    model: str = ""
    provider_name: str = ""

    def __init__(self, api_key: Optional[str] = None, task_url: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.piapi_api_key
        self.task_url = (task_url or settings.piapi_task_url).rstrip("/")
        self.submit_timeout = settings.provider_timeout_seconds
        self.poll_timeout = settings.provider_poll_timeout_seconds

    @property
    def name(self) -> str:
        return self.provider_name

    def build_payload(self, task: ContentTask) -> Dict[str, Any]:
        """Model-specific ``model``, ``task_type`` and ``input`` fields."""
        raise NotImplementedError

    def extract_output(self, output: Dict[str, Any]) -> Dict[str, Any]:
        """Pull artifact_url, thumbnail_url and duration out of ``data.output``."""
        raise NotImplementedError

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _webhook_config(self) -> Dict[str, Any]:
        return {
            "webhook_config": {
                "endpoint": f"{settings.provider_webhook_url}/{self.name}",
                "secret": settings.provider_webhook_secret,
            }
        }

    async def submit(self, task: ContentTask) -> ProviderResponse:
        """Create a task at PiAPI and return its task id."""
        if not self.api_key:
            raise ProviderValidationError("API key is not configured", self.name)

        payload = self.build_payload(task)
        payload.setdefault("config", {}).update(self._webhook_config())

        logger.info(
            "Submitting task to provider",
            task_id=str(task.id),
            provider=self.name,
            model=payload.get("model"),
            task_type=payload.get("task_type"),
        )

        try:
            with ProviderMetricsContext(self.name, "submit"):
                async with aiohttp.ClientSession() as session:
                    async with session.post(
                        self.task_url,
                        json=payload,
                        headers=self._headers(),
                        timeout=aiohttp.ClientTimeout(total=self.submit_timeout)
                    ) as response:
                        if response.status != 200:
                            error_text = await response.text()
                            raise ProviderError(
                                f"Submission failed: {response.status} - {error_text}",
                                self.name
                            )
                        result = await response.json()
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(f"Submission timed out: {e}", self.name)
        except aiohttp.ClientError as e:
            raise ProviderConnectionError(f"Failed to connect: {e}", self.name)
        except ValueError as e:
            raise ProviderValidationError(f"Malformed response body: {e}", self.name)

        if not isinstance(result, dict):
            raise ProviderValidationError(f"Unexpected response body: {result!r}", self.name)
        if result.get("code") != 200:
            raise ProviderError(f"API error: {result.get('message') or 'Unknown error'}", self.name)

        data = result.get("data") or {}
        remote_id = data.get("task_id") if isinstance(data, dict) else None
        if not remote_id:
            raise ProviderValidationError(f"Response carried no task id: {result}", self.name)

        logger.info("Task submitted to provider", task_id=str(task.id), provider=self.name, remote_id=remote_id)
        return ProviderResponse(
            remote_id=remote_id,
            status=TaskStatus.QUEUED,
            message="Task submitted",
        )

    async def poll(self, remote_id: str) -> ProviderResponse:
        """Fetch task status from PiAPI."""
        try:
            with ProviderMetricsContext(self.name, "poll"):
                async with aiohttp.ClientSession() as session:
                    async with session.get(
                        f"{self.task_url}/{remote_id}",
                        headers=self._headers(),
                        timeout=aiohttp.ClientTimeout(total=self.poll_timeout)
                    ) as response:
                        if response.status == 404:
                            return ProviderResponse(
                                remote_id=remote_id,
                                status=TaskStatus.FAILED,
                                message="Task not found at provider"
                            )
                        if response.status != 200:
                            raise ProviderError(
                                f"Failed to get status: {response.status}",
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

        data = (result.get("data") or {}) if isinstance(result, dict) else None
        if not isinstance(data, dict):
            raise ProviderValidationError(f"Unexpected status body: {result!r}", self.name, remote_id)
        try:
            return self._to_response(remote_id, data)
        except (TypeError, ValueError, AttributeError) as e:
            raise ProviderValidationError(f"Malformed status body: {e}", self.name, remote_id)

    def parse_webhook(self, payload: Dict[str, Any]) -> ProviderResponse:
        data = payload.get("data") or {}
        remote_id = data.get("task_id")
        if not remote_id:
            raise ProviderValidationError("Webhook body carried no task id", self.name)
        return self._to_response(remote_id, data)

    def _to_response(self, remote_id: str, data: Dict[str, Any]) -> ProviderResponse:
        raw_status = data.get("status")
        status = map_provider_status(raw_status) or TaskStatus.PROCESSING
        error = data.get("error") or {}
        error_message = error.get("message") if isinstance(error, dict) else str(error)

        if status == TaskStatus.COMPLETED:
            extracted = self.extract_output(data.get("output") or {})
            if not extracted.get("artifact_url"):
                # Completed without a usable artifact
                return ProviderResponse(
                    remote_id=remote_id,
                    status=TaskStatus.FAILED,
                    message="Provider reported completion without an artifact",
                    metadata={"raw_status": raw_status},
                )
            return ProviderResponse(
                remote_id=remote_id,
                status=TaskStatus.COMPLETED,
                progress=100.0,
                message="Task completed",
                artifact_url=extracted["artifact_url"],
                thumbnail_url=extracted.get("thumbnail_url"),
                duration_seconds=extracted.get("duration_seconds"),
                metadata=extracted.get("metadata", {}),
            )

        if status == TaskStatus.FAILED:
            return ProviderResponse(
                remote_id=remote_id,
                status=TaskStatus.FAILED,
                message=error_message or f"Provider status: {raw_status}",
                metadata={"raw_status": raw_status},
            )

        output = data.get("output")
        progress = output.get("progress") if isinstance(output, dict) else None
        return ProviderResponse(
            remote_id=remote_id,
            status=status,
            progress=float(progress or 0.0),
            message=f"Provider status: {raw_status}",
        )


class DiffrhythmProvider(PiAPITaskProvider):
    """Diffrhythm text-to-music through GoAPI."""

    model = "Qubico/diffrhythm"
    provider_name = "diffrhythm"

    def __init__(self, api_key: Optional[str] = None, task_url: Optional[str] = None):
        super().__init__(
            api_key=api_key if api_key is not None else settings.diffrhythm_api_key,
            task_url=task_url or settings.diffrhythm_task_url,
        )

    def build_payload(self, task: ContentTask) -> Dict[str, Any]:
        params = task.request_params or {}
        style = params.get("style") or "pop"
        tempo = params.get("tempo") or "medium"
        mood = params.get("mood") or "neutral"
        # Longer prompts get the full-length model
        estimated_duration = max(MIN_SONG_SECONDS, math.ceil(len(task.prompt) / 50))
        return {
            "model": self.model,
            "task_type": "txt2audio-full" if estimated_duration > 30 else "txt2audio-base",
            "input": {
                "lyrics": format_timestamped_lyrics(params.get("lyrics") or task.prompt),
                "style_prompt": f"{style} music with {tempo} tempo and {mood} mood",
            },
            "config": {"service_mode": "async"},
        }

    def extract_output(self, output: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "artifact_url": output.get("audio_url"),
            "thumbnail_url": output.get("cover_image"),
            "duration_seconds": output.get("duration"),
        }


class SunoProvider(PiAPITaskProvider):
    """Suno music generation through PiAPI."""

    model = "music-u"
    provider_name = "suno"

    def build_payload(self, task: ContentTask) -> Dict[str, Any]:
        params = task.request_params or {}
        description = (
            f"{task.prompt}. Style: {params.get('style') or 'pop'}, "
            f"Tempo: {params.get('tempo') or 'medium'}, Mood: {params.get('mood') or 'neutral'}"
        )
        return {
            "model": self.model,
            "task_type": "generate_music",
            "input": {
                "gpt_description_prompt": description,
                "negative_tags": params.get("negative_tags", ""),
                "lyrics_type": params.get("lyrics_type", "generate"),
                "seed": -1,
            },
            "config": {"service_mode": "public"},
        }

    def extract_output(self, output: Dict[str, Any]) -> Dict[str, Any]:
        songs = output.get("songs") or []
        if not songs:
            return {}
        first = songs[0]
        metadata = {"generation_id": output.get("generation_id")}
        if len(songs) > 1:
            metadata["alternatives"] = [song.get("song_path") for song in songs[1:]]
        return {
            "artifact_url": first.get("song_path"),
            "thumbnail_url": first.get("image_path"),
            "duration_seconds": first.get("duration"),
            "metadata": metadata,
        }


class PiAPIImageProvider(PiAPITaskProvider):
    """Image generation through the PiAPI Gemini image model."""

    model = "gemini"
    provider_name = "piapi_image"

    def build_payload(self, task: ContentTask) -> Dict[str, Any]:
        params = task.request_params or {}
        return {
            "model": self.model,
            "task_type": "gemini-2.5-flash-image",
            "input": {
                "prompt": task.prompt,
                "output_format": params.get("output_format", "png"),
                "aspect_ratio": params.get("aspect_ratio", "16:9"),
            },
        }

    def extract_output(self, output: Dict[str, Any]) -> Dict[str, Any]:
        image_urls = output.get("image_urls") or []
        artifact_url = image_urls[0] if image_urls else output.get("image_url")
        return {"artifact_url": artifact_url, "thumbnail_url": artifact_url}
