"""
Credits router for balance and ledger history.
"""
import structlog
from fastapi import APIRouter, Depends, Query
from typing import Dict, Any, Optional
from sqlmodel import Session

from mediagen.api.services.ledger import LedgerService
from mediagen.core.config import CreditType
from mediagen.core.exceptions import UserNotFoundError
from mediagen.core.security import SessionUser, get_current_user
from mediagen.db.models import CreditBalance, CreditLogEntryRead, User
from mediagen.db.session import get_session

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("")
async def get_credit_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    credit_type: Optional[CreditType] = None,
    current_user: SessionUser = Depends(get_current_user),
    session: Session = Depends(get_session)
) -> Dict[str, Any]:
    """Get balances and the user's ledger entries, newest first."""
    user = session.get(User, current_user.user_id)
    if not user:
        raise UserNotFoundError(str(current_user.user_id))

    entries = LedgerService.history(
        session, current_user.user_id, limit=limit, offset=offset, credit_type=credit_type
    )

    return {
        "credits": user.credits,
        "radio_credits": user.radio_credits,
        "total_credits_used": user.total_credits_used,
        "is_radio_subscribed": user.is_radio_subscribed,
        "radio_subscription_expires_at": user.radio_subscription_expires_at,
        "history": [CreditLogEntryRead.model_validate(entry) for entry in entries],
        "total_entries": len(entries),
    }


@router.get("/balance", response_model=CreditBalance)
async def get_credit_balance(
    credit_type: CreditType = CreditType.STANDARD,
    current_user: SessionUser = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Get the current balance with lifetime totals."""
    return LedgerService.summary(session, current_user.user_id, credit_type)
