"""
Application configuration constants and enums.
"""
from enum import Enum


class ContentKind(str, Enum):
    """Kinds of content a user can ask a provider to generate."""
    SONG = "song"
    IMAGE = "image"
    VIDEO = "video"


class TaskStatus(str, Enum):
    """Generation task lifecycle status."""
    PENDING = "pending"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (TaskStatus.COMPLETED, TaskStatus.FAILED)


class CreditType(str, Enum):
    """Balances a user holds. Each one is ledgered separately."""
    STANDARD = "standard"
    RADIO = "radio"


class DebitPolicy(str, Enum):
    """What a debit does when the balance cannot cover the amount."""
    STRICT = "strict"
    CLAMP = "clamp"


class UserRole(str, Enum):
    """Roles carried in the access token."""
    USER = "user"
    ADMIN = "admin"


class ProviderName(str, Enum):
    """Generation providers known to the worker."""
    SUNO = "suno"
    DIFFRHYTHM = "diffrhythm"
    PIAPI_IMAGE = "piapi_image"
    OPENAI_VIDEO = "openai_video"
    MOCK = "mock"


class RelatedEntityType(str, Enum):
    """Back-reference types stored on credit log entries."""
    SONG = "Song"
    MEDIA = "Media"
    CHECKOUT_SESSION = "stripe_payment"
    ADMIN_GRANT = "admin_grant"


# Record type credit log entries reference for each kind
RELATED_ENTITY_FOR_KIND = {
    ContentKind.SONG: RelatedEntityType.SONG,
    ContentKind.IMAGE: RelatedEntityType.MEDIA,
    ContentKind.VIDEO: RelatedEntityType.MEDIA,
}

# Default provider per content kind
DEFAULT_PROVIDERS = {
    ContentKind.SONG: ProviderName.DIFFRHYTHM,
    ContentKind.IMAGE: ProviderName.PIAPI_IMAGE,
    ContentKind.VIDEO: ProviderName.OPENAI_VIDEO,
}

# Providers allowed for each content kind
PROVIDERS_BY_KIND = {
    ContentKind.SONG: (ProviderName.DIFFRHYTHM, ProviderName.SUNO, ProviderName.MOCK),
    ContentKind.IMAGE: (ProviderName.PIAPI_IMAGE, ProviderName.MOCK),
    ContentKind.VIDEO: (ProviderName.OPENAI_VIDEO, ProviderName.MOCK),
}

# Provider status vocabulary mapped onto the internal lifecycle
PROVIDER_STATUS_MAP = {
    "pending": TaskStatus.QUEUED,
    "staged": TaskStatus.QUEUED,
    "submitted": TaskStatus.QUEUED,
    "queued": TaskStatus.PROCESSING,
    "in_queue": TaskStatus.PROCESSING,
    "processing": TaskStatus.PROCESSING,
    "running": TaskStatus.PROCESSING,
    "in_progress": TaskStatus.PROCESSING,
    "starting": TaskStatus.PROCESSING,
    "completed": TaskStatus.COMPLETED,
    "succeeded": TaskStatus.COMPLETED,
    "success": TaskStatus.COMPLETED,
    "failed": TaskStatus.FAILED,
    "error": TaskStatus.FAILED,
    "canceled": TaskStatus.FAILED,
    "cancelled": TaskStatus.FAILED,
}

# Radio plans sold through checkout: plan id -> months of access
RADIO_PLAN_MONTHS = {
    "price_1SZUxmPu871RVkqEkszDQ3nk": 1,
    "prod_TWSIPHfoAy4mLQ": 3,
    "prod_TWSJRRFz6zZ8LL": 6,
    "prod_TWSKYkVBH7Stcf": 12,
}

# Word-count pricing for music generation
SONG_BASE_WORDS = 200
SONG_WORD_PACK = 10

# Fallback when a radio checkout carries no known plan id: amount paid (cents) -> months
RADIO_MONTHS_BY_AMOUNT = {
    500: 1,
    1200: 3,
    2500: 6,
    4500: 12,
}
