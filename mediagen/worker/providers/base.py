"""
Base provider interface for external generation services.
"""
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional
from dataclasses import dataclass, field

from mediagen.core.config import PROVIDER_STATUS_MAP, TaskStatus
from mediagen.db.models import ContentTask


@dataclass
class ProviderResponse:
    """Standardized provider response."""
    remote_id: str
    status: TaskStatus
    progress: float = 0.0
    message: Optional[str] = None
    artifact_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    duration_seconds: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class ProviderError(Exception):
    """Base provider error."""
    def __init__(self, message: str, provider: str, remote_id: Optional[str] = None):
        self.message = message
        self.provider = provider
        self.remote_id = remote_id
        super().__init__(f"{provider}: {message}")


class ProviderTimeoutError(ProviderError):
    """Provider timeout error."""
    pass


class ProviderConnectionError(ProviderError):
    """Provider connection error."""
    pass


class ProviderValidationError(ProviderError):
    """Provider rejected the request or returned a malformed response."""
    pass


def map_provider_status(raw_status: Optional[str]) -> Optional[TaskStatus]:
    """Map a provider status word onto the task lifecycle; None when unknown."""
    if not raw_status:
        return None
    return PROVIDER_STATUS_MAP.get(str(raw_status).strip().lower())


class IProvider(ABC):
    """Abstract base class for generation providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name identifier."""
        pass

    @abstractmethod
    async def submit(self, task: ContentTask) -> ProviderResponse:
        """
        Submit a content task to the provider.

        Args:
            task: Pending content task carrying prompt and request params

        Returns:
            ProviderResponse with remote_id and initial status

        Raises:
            ProviderError: On submission failure
        """
        pass

    @abstractmethod
    async def poll(self, remote_id: str) -> ProviderResponse:
        """
        Poll task status from the provider.

        Args:
            remote_id: Remote task identifier from submit()

        Returns:
            ProviderResponse with current status, progress and artifact

        Raises:
            ProviderError: On polling failure
        """
        pass

    @abstractmethod
    def parse_webhook(self, payload: Dict[str, Any]) -> ProviderResponse:
        """
        Parse a push notification body into a ProviderResponse.

        Raises:
            ProviderValidationError: When the body carries no task id
        """
        pass
