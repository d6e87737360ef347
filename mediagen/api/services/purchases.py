"""
Purchase gateway: credits the ledger from verified Stripe checkout events.
"""
from datetime import timedelta
from typing import Any, Dict, Optional
from uuid import UUID
import structlog
from sqlmodel import Session

from mediagen.api.services.ledger import LedgerService
from mediagen.core.config import (
    RADIO_MONTHS_BY_AMOUNT,
    RADIO_PLAN_MONTHS,
    CreditType,
    DebitPolicy,
    RelatedEntityType,
)
from mediagen.core.exceptions import DuplicateEntryError, MissingMetadataError, ValidationError
from mediagen.core.timestamps import as_utc, utcnow
from mediagen.db.models import User

logger = structlog.get_logger(__name__)

# Checkout events that mean the money has arrived
PAID_EVENT_TYPES = ("checkout.session.completed", "checkout.session.async_payment_succeeded")
PAID_STATUSES = ("paid", "no_payment_required")

# Length of one month of radio access
RADIO_MONTH = timedelta(days=30)


class PurchaseService:
    """Stripe checkout handling."""

    @staticmethod
    def handle_event(session: Session, event: Dict[str, Any]) -> Dict[str, Any]:
        """Dispatch a verified Stripe event."""
        event_type = event.get("type")
        if event_type not in PAID_EVENT_TYPES:
            logger.info("Stripe event ignored", event_type=event_type, event_id=event.get("id"))
            return {"status": "ignored", "event_type": event_type}
        return PurchaseService.handle_checkout_completed(session, event)

    @staticmethod
    def _radio_months(metadata: Dict[str, Any], amount_total: Optional[int]) -> int:
        plan_id = metadata.get("planId")
        if plan_id in RADIO_PLAN_MONTHS:
            return RADIO_PLAN_MONTHS[plan_id]
        if metadata.get("intervalCount"):
            return int(metadata["intervalCount"])
        return RADIO_MONTHS_BY_AMOUNT.get(amount_total, 1)

    @staticmethod
    def handle_checkout_completed(session: Session, event: Dict[str, Any]) -> Dict[str, Any]:
        """
        Credit the buyer for a completed checkout session.

        The session id is the idempotency key: a redelivered event credits
        nothing and reports ``already_processed``.
        """
        checkout = event["data"]["object"]
        session_id = checkout["id"]

        payment_status = checkout.get("payment_status")
        if payment_status not in PAID_STATUSES:
            logger.info("Unpaid checkout skipped", session_id=session_id, payment_status=payment_status)
            return {"status": "skipped", "reason": "unpaid", "session_id": session_id}

        metadata = checkout.get("metadata") or {}
        credit_type = CreditType.RADIO if metadata.get("creditType") == "radio" else CreditType.STANDARD

        missing = []
        if not metadata.get("userId"):
            missing.append("userId")
        if credit_type == CreditType.STANDARD and not metadata.get("credits"):
            missing.append("credits")
        if missing:
            logger.error("Checkout metadata incomplete", session_id=session_id, missing=missing)
            raise MissingMetadataError(missing)

        try:
            user_id = UUID(str(metadata["userId"]))
            if credit_type == CreditType.RADIO:
                months = PurchaseService._radio_months(metadata, checkout.get("amount_total"))
                amount = int(metadata.get("credits") or months)
            else:
                amount = int(metadata["credits"])
        except ValueError:
            raise ValidationError("Checkout metadata is malformed", details={"session_id": session_id})

        if LedgerService.has_entry_for(session, session_id, RelatedEntityType.CHECKOUT_SESSION.value):
            logger.info("Checkout already processed", session_id=session_id)
            return {"status": "already_processed", "session_id": session_id}

        description = (
            f"Purchased {amount} radio credits ({months} month{'s' if months > 1 else ''})"
            if credit_type == CreditType.RADIO
            else f"Purchased {amount} credits"
        )

        try:
            new_balance = LedgerService.credit(
                session,
                user_id,
                amount,
                description=description,
                related_entity_id=session_id,
                related_entity_type=RelatedEntityType.CHECKOUT_SESSION.value,
                credit_type=credit_type,
                idempotency_key=f"stripe:{session_id}",
                commit=False,
            )

            if credit_type == CreditType.RADIO:
                user = session.get(User, user_id)
                now = utcnow()
                starts_at = as_utc(user.radio_subscription_expires_at)
                if starts_at is None or starts_at < now:
                    starts_at = now
                user.is_radio_subscribed = True
                user.radio_subscription_expires_at = starts_at + RADIO_MONTH * months
                session.add(user)

            LedgerService.commit_entry(session, f"stripe:{session_id}")
        except DuplicateEntryError:
            session.rollback()
            logger.info("Checkout already processed", session_id=session_id)
            return {"status": "already_processed", "session_id": session_id}

        logger.info(
            "Checkout credited",
            session_id=session_id,
            user_id=str(user_id),
            credit_type=credit_type.value,
            amount=amount,
            balance_after=new_balance,
        )
        return {
            "status": "credited",
            "session_id": session_id,
            "credit_type": credit_type.value,
            "credits_added": amount,
            "balance": new_balance,
        }

    @staticmethod
    def remove_radio_subscription(session: Session, user_id: UUID, removed_by: str) -> User:
        """
        End a user's radio subscription.

        The remaining radio credits are debited through the ledger and the
        subscription fields are cleared in the same commit.
        """
        remaining = LedgerService.get_balance(session, user_id, CreditType.RADIO, for_update=True)
        LedgerService.debit(
            session,
            user_id,
            remaining,
            description="Radio subscription removed by admin",
            related_entity_id=removed_by,
            related_entity_type=RelatedEntityType.ADMIN_GRANT.value,
            credit_type=CreditType.RADIO,
            policy=DebitPolicy.CLAMP,
            commit=False,
        )

        user = session.get(User, user_id)
        user.is_radio_subscribed = False
        user.radio_subscription_expires_at = None
        session.add(user)
        LedgerService.commit_entry(session, None)
        session.refresh(user)

        logger.info(
            "Radio subscription removed",
            user_id=str(user_id),
            removed_by=removed_by,
            radio_credits_removed=remaining,
        )
        return user
