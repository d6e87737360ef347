"""
Content task model tracking one generation request at an external provider.
"""
from datetime import datetime
from typing import Dict, Optional, Any
from uuid import UUID, uuid4
from sqlmodel import Field, SQLModel, JSON, Column
from mediagen.core.config import ContentKind, TaskStatus
from mediagen.core.timestamps import utcnow


class ContentTaskBase(SQLModel):
    """Base content task model with shared fields."""
    kind: str = Field(index=True, description="song, image or video")
    provider: str = Field(description="Provider the task was submitted to")
    title: Optional[str] = Field(default=None)
    prompt: str = Field(description="Prompt the user submitted")
    request_params: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON), description="Provider request parameters")


class ContentTask(ContentTaskBase, table=True):
    """Content task database model."""
    __tablename__ = "content_tasks"

    id: Optional[UUID] = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    status: str = Field(default=TaskStatus.PENDING, index=True)
    external_task_id: Optional[str] = Field(default=None, index=True, description="Provider correlation id")
    credits_used: int = Field(default=0, description="Credits reserved for this task, charged on completion")
    credits_deducted: bool = Field(default=False)
    progress: float = Field(default=0.0, description="Progress reported by the provider (0-100)")
    artifact_url: Optional[str] = Field(default=None)
    thumbnail_url: Optional[str] = Field(default=None)
    duration_seconds: Optional[float] = Field(default=None)
    result_metadata: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    error_message: Optional[str] = Field(default=None)
    generation_time_seconds: Optional[int] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class ContentTaskRead(ContentTaskBase):
    """Content task read schema (for API responses)."""
    id: UUID
    user_id: UUID
    status: str
    external_task_id: Optional[str]
    credits_used: int
    credits_deducted: bool
    progress: float
    artifact_url: Optional[str]
    thumbnail_url: Optional[str]
    error_message: Optional[str]
    created_at: datetime
    completed_at: Optional[datetime]


class GenerationResponse(SQLModel):
    """Generation request accepted."""
    task_id: UUID
    status: str
    kind: str
    provider: str
    estimated_credits: int
    external_task_id: Optional[str] = None


class TaskStatusResponse(SQLModel):
    """Task status as seen by a polling client."""
    task_id: UUID
    status: str
    progress: float
    artifact_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    credits_used: int
    credits_deducted: bool
    error_message: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class GenerationRequest(SQLModel):
    """Body of a generation request."""
    kind: ContentKind
    prompt: str = Field(min_length=1, max_length=5000)
    provider: Optional[str] = Field(default=None, description="Defaults to the kind's standard provider")
    title: Optional[str] = Field(default=None, max_length=200)
    params: Dict[str, Any] = Field(default_factory=dict, description="Style, tempo, mood, aspect ratio, duration and similar")
