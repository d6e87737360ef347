"""
Credit pricing for generation requests.
"""
import math
from mediagen.core.config import SONG_BASE_WORDS, SONG_WORD_PACK, ContentKind, ProviderName
from mediagen.core.exceptions import ValidationError
from mediagen.core.settings import settings


def count_words(text: str) -> int:
    return len(text.split())


def song_credits(prompt: str, base_credits: int, credits_per_pack: int) -> int:
    """Base price up to 200 words, plus one pack price per started 10 words beyond."""
    words = count_words(prompt)
    if words <= SONG_BASE_WORDS:
        return base_credits
    packs = math.ceil((words - SONG_BASE_WORDS) / SONG_WORD_PACK)
    return base_credits + packs * credits_per_pack


class PricingService:
    """Estimated credit cost of a generation, fixed when the task is created."""

    @staticmethod
    def price(kind: str, provider: str, prompt: str) -> int:
        kind = ContentKind(kind)

        if kind == ContentKind.SONG:
            if provider == ProviderName.SUNO:
                return song_credits(prompt, settings.suno_base_credits, settings.suno_credits_per_pack)
            return song_credits(prompt, settings.diffrhythm_base_credits, settings.diffrhythm_credits_per_pack)

        if kind == ContentKind.IMAGE:
            return settings.image_generation_credits

        if kind == ContentKind.VIDEO:
            return settings.video_generation_credits

        raise ValidationError(f"No price for content kind: {kind}")
