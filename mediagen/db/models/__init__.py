# Database models
from .user import User
from .credit import CreditLogEntry, CreditLogEntryRead, CreditBalance, AdminCreditGrant
from .content import ContentTask, ContentTaskRead, GenerationRequest, GenerationResponse, TaskStatusResponse
from .gallery import GalleryItem

__all__ = [
    # User models
    "User",
    # Credit models
    "CreditLogEntry", "CreditLogEntryRead", "CreditBalance", "AdminCreditGrant",
    # Content models
    "ContentTask", "ContentTaskRead", "GenerationRequest", "GenerationResponse", "TaskStatusResponse",
    # Gallery models
    "GalleryItem",
]
