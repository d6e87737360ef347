# Provider package initialization

from mediagen.core.config import ProviderName
from .base import IProvider, ProviderError
from .mock import MockProvider


def get_provider(name: str) -> IProvider:
    """Get a provider instance by name."""
    name = ProviderName(str(name).lower())
    if name == ProviderName.SUNO:
        from .piapi import SunoProvider
        return SunoProvider()
    if name == ProviderName.DIFFRHYTHM:
        from .piapi import DiffrhythmProvider
        return DiffrhythmProvider()
    if name == ProviderName.PIAPI_IMAGE:
        from .piapi import PiAPIImageProvider
        return PiAPIImageProvider()
    if name == ProviderName.OPENAI_VIDEO:
        from .openai_video import OpenAIVideoProvider
        return OpenAIVideoProvider()
    return MockProvider()


__all__ = ["IProvider", "ProviderError", "MockProvider", "get_provider"]
