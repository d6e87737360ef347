"""
Credit log model: the audit trail behind every balance change.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4
from sqlmodel import Field, SQLModel
from mediagen.core.config import CreditType
from mediagen.core.timestamps import utcnow


class CreditLogEntryBase(SQLModel):
    """Base credit log model with shared fields."""
    credit_type: str = Field(default=CreditType.STANDARD, index=True)
    amount: int = Field(description="Signed amount (positive for credits, negative for debits)")
    balance_after: int = Field(description="Balance snapshot right after this entry")
    description: str = Field(description="Human-readable description")
    related_entity_id: Optional[str] = Field(default=None, index=True, description="Content task or payment reference")
    related_entity_type: Optional[str] = Field(default=None, description="Type of the related entity")


class CreditLogEntry(CreditLogEntryBase, table=True):
    """Credit log database model. Rows are inserted once and never updated."""
    __tablename__ = "credit_logs"

    id: Optional[UUID] = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    idempotency_key: Optional[str] = Field(default=None, unique=True, description="Guards against duplicate settlement or purchase")
    created_at: datetime = Field(default_factory=utcnow)


class CreditLogEntryRead(CreditLogEntryBase):
    """Credit log read schema (for API responses)."""
    id: UUID
    user_id: UUID
    created_at: datetime


class CreditBalance(SQLModel):
    """User credit balance summary."""
    user_id: UUID
    credit_type: str
    current_balance: int
    total_earned: int
    total_spent: int
    last_transaction_at: Optional[datetime] = None


class AdminCreditGrant(SQLModel):
    """Admin request to add credits to a user."""
    amount: int = Field(gt=0)
    credit_type: CreditType = CreditType.STANDARD
    plan_id: Optional[str] = Field(default=None, description="Radio plan the grant corresponds to")
    description: Optional[str] = None
