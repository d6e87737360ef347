"""
Gallery model: published references to finished artifacts.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4
from sqlmodel import Field, SQLModel
from mediagen.core.timestamps import utcnow


class GalleryItem(SQLModel, table=True):
    """Gallery database model. One row per completed content task."""
    __tablename__ = "gallery_items"

    id: Optional[UUID] = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    task_id: UUID = Field(foreign_key="content_tasks.id", unique=True)
    kind: str
    title: Optional[str] = None
    artifact_url: str
    thumbnail_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
