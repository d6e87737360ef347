"""
User model holding credit balances and radio subscription state.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4
from sqlmodel import Field, SQLModel
from mediagen.core.config import UserRole
from mediagen.core.timestamps import utcnow


class UserBase(SQLModel):
    """Base user model with shared fields."""
    email: str = Field(unique=True, index=True)
    role: str = Field(default=UserRole.USER)
    credits: int = Field(default=0, ge=0)
    radio_credits: int = Field(default=0, ge=0)
    total_credits_used: int = Field(default=0, ge=0)
    is_radio_subscribed: bool = Field(default=False)
    radio_subscription_expires_at: Optional[datetime] = None


class User(UserBase, table=True):
    """User database model.

    Balance columns change only through the ledger service.
    """
    __tablename__ = "users"

    id: Optional[UUID] = Field(default_factory=uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
