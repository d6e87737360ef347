"""
Admin router: manual credit grants and radio subscription removal.
"""
import structlog
from uuid import UUID
from fastapi import APIRouter, Depends
from typing import Dict, Any
from sqlmodel import Session

from mediagen.api.services.ledger import LedgerService
from mediagen.api.services.purchases import PurchaseService
from mediagen.core.config import RADIO_PLAN_MONTHS, CreditType, RelatedEntityType
from mediagen.core.exceptions import ValidationError
from mediagen.core.security import SessionUser, require_admin
from mediagen.db.models import AdminCreditGrant
from mediagen.db.session import get_session

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/users/{user_id}/credits")
async def grant_credits(
    user_id: UUID,
    grant: AdminCreditGrant,
    admin: SessionUser = Depends(require_admin),
    session: Session = Depends(get_session)
) -> Dict[str, Any]:
    """Add standard or radio credits to a user's balance."""
    description = grant.description
    if grant.credit_type == CreditType.RADIO and grant.plan_id:
        months = RADIO_PLAN_MONTHS.get(grant.plan_id)
        if months is None:
            raise ValidationError("Invalid radio plan", details={"plan_id": grant.plan_id})
        description = description or (
            f"Admin added {grant.amount} radio credits ({months} month{'s' if months > 1 else ''})"
        )

    if not description:
        prefix = "radio " if grant.credit_type == CreditType.RADIO else ""
        description = f"Admin added {grant.amount} {prefix}credits"

    new_balance = LedgerService.credit(
        session,
        user_id,
        grant.amount,
        description=description,
        related_entity_id=str(admin.user_id),
        related_entity_type=RelatedEntityType.ADMIN_GRANT.value,
        credit_type=grant.credit_type,
    )

    logger.info(
        "Admin credit grant",
        admin_id=str(admin.user_id),
        user_id=str(user_id),
        credit_type=grant.credit_type.value,
        amount=grant.amount,
    )
    return {
        "success": True,
        "user_id": str(user_id),
        "credit_type": grant.credit_type.value,
        "credits_added": grant.amount,
        "balance": new_balance,
    }


@router.delete("/users/{user_id}/radio-subscription")
async def remove_radio_subscription(
    user_id: UUID,
    admin: SessionUser = Depends(require_admin),
    session: Session = Depends(get_session)
) -> Dict[str, Any]:
    """Cancel a user's radio subscription and clear their radio credits."""
    user = PurchaseService.remove_radio_subscription(session, user_id, removed_by=str(admin.user_id))

    logger.info("Admin removed radio subscription", admin_id=str(admin.user_id), user_id=str(user_id))
    return {
        "success": True,
        "message": f"Removed radio subscription from {user.email}",
        "user": {
            "id": str(user.id),
            "email": user.email,
            "radio_credits": user.radio_credits,
            "is_radio_subscribed": user.is_radio_subscribed,
        },
    }
