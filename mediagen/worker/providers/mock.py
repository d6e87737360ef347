"""
Mock provider for local development and tests.
"""
import uuid
from typing import Dict, Any
from mediagen.core.config import TaskStatus
from mediagen.db.models import ContentTask
from .base import IProvider, ProviderResponse, ProviderValidationError, map_provider_status


class MockProvider(IProvider):
    """Accepts every task and reports it completed on the first poll."""

    @property
    def name(self) -> str:
        return "mock"

    async def submit(self, task: ContentTask) -> ProviderResponse:
        """Submit task for processing (mock)."""
        return ProviderResponse(
            remote_id=f"mock-{uuid.uuid4()}",
            status=TaskStatus.QUEUED,
            message="Mock task submitted"
        )

    async def poll(self, remote_id: str) -> ProviderResponse:
        """Poll task status (mock)."""
        return ProviderResponse(
            remote_id=remote_id,
            status=TaskStatus.COMPLETED,
            progress=100.0,
            message="Mock task completed",
            artifact_url=f"https://mock.example.com/{remote_id}.bin"
        )

    def parse_webhook(self, payload: Dict[str, Any]) -> ProviderResponse:
        data = payload.get("data") or {}
        remote_id = data.get("task_id")
        if not remote_id:
            raise ProviderValidationError("Webhook body carried no task id", self.name)
        return ProviderResponse(
            remote_id=remote_id,
            status=map_provider_status(data.get("status")) or TaskStatus.PROCESSING,
            artifact_url=(data.get("output") or {}).get("url"),
            message=(data.get("error") or {}).get("message"),
        )
