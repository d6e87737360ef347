"""
Webhooks router for generation providers and Stripe.

Every payload is authenticated before anything in it is trusted. Provider
callbacks are acknowledged with 200 unless the failure is transient, so the
provider only retries when a retry can help.
"""

import json
from typing import Dict, Any, Optional
from fastapi import APIRouter, Depends, Header, Request, status
import stripe
import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from mediagen.api.services.purchases import PurchaseService
from mediagen.api.services.reconciliation import ReconciliationService
from mediagen.core.config import ProviderName
from mediagen.core.exceptions import (
    InvalidSignatureError,
    MediaGenException,
    NotFoundError,
)
from mediagen.core.monitoring.prometheus_metrics import increment_webhook_events
from mediagen.core.security import SecurityUtils
from mediagen.core.settings import settings
from mediagen.db.session import get_session

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = structlog.get_logger(__name__)

stripe.api_key = settings.stripe_secret_key or None


class TransientWebhookError(MediaGenException):
    """Database trouble while applying a webhook; the sender should retry."""

    def __init__(self):
        super().__init__(
            message="Temporary failure, retry later",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE
        )


def verify_provider_request(
    payload: bytes,
    signature: Optional[str],
    shared_secret: Optional[str],
) -> bool:
    """Accept either an HMAC-SHA256 signature or the shared secret header."""
    secret = settings.provider_webhook_secret
    return (
        SecurityUtils.verify_webhook_signature(payload, signature, secret)
        or SecurityUtils.verify_shared_secret(shared_secret, secret)
    )


@router.post("/providers/{provider}")
async def provider_webhook(
    provider: str,
    request: Request,
    x_webhook_signature: Optional[str] = Header(None),
    x_webhook_secret: Optional[str] = Header(None),
    session: Session = Depends(get_session)
) -> Dict[str, Any]:
    """
    Handle task status notifications from a generation provider.

    Expected body (PiAPI task API format):
    {
        "data": {
            "task_id": "provider task id",
            "status": "completed|failed|processing|...",
            "output": {...},
            "error": {"message": "..."}
        }
    }
    """
    source = f"provider:{provider}"
    try:
        ProviderName(provider)
    except ValueError:
        raise NotFoundError("Provider", provider)

    payload = await request.body()
    if not verify_provider_request(payload, x_webhook_signature, x_webhook_secret):
        increment_webhook_events(source, "invalid_signature")
        logger.warning("Invalid provider webhook signature", provider=provider)
        raise InvalidSignatureError()

    try:
        data = json.loads(payload)
        result = ReconciliationService.handle_provider_webhook(session, provider, data)
    except SQLAlchemyError as e:
        session.rollback()
        increment_webhook_events(source, "retry")
        logger.error("Database error while applying provider webhook", provider=provider, error=str(e))
        raise TransientWebhookError()
    except Exception as e:
        session.rollback()
        increment_webhook_events(source, "error")
        logger.error("Provider webhook processing failed", provider=provider, error=str(e))
        return {"status": "error", "processed": False}

    increment_webhook_events(source, result["status"])
    return result


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    session: Session = Depends(get_session)
) -> Dict[str, Any]:
    """
    Handle Stripe events.

    Completed checkout sessions credit the buyer once per session id;
    redeliveries are acknowledged without crediting again.
    """
    payload = await request.body()

    if not stripe_signature or not settings.stripe_webhook_secret:
        increment_webhook_events("stripe", "invalid_signature")
        raise InvalidSignatureError("Missing Stripe signature")

    try:
        stripe.Webhook.construct_event(payload, stripe_signature, settings.stripe_webhook_secret)
    except ValueError:
        increment_webhook_events("stripe", "invalid_payload")
        raise MediaGenException("Invalid payload", status.HTTP_400_BAD_REQUEST)
    except stripe.SignatureVerificationError:
        increment_webhook_events("stripe", "invalid_signature")
        logger.warning("Invalid Stripe webhook signature")
        raise InvalidSignatureError()

    # Work on the verified raw JSON rather than Stripe's object wrappers
    event = json.loads(payload)
    logger.info("Stripe event received", event_id=event.get("id"), event_type=event.get("type"))

    try:
        result = PurchaseService.handle_event(session, event)
    except SQLAlchemyError as e:
        session.rollback()
        increment_webhook_events("stripe", "retry")
        logger.error("Database error while applying Stripe event", event_id=event.get("id"), error=str(e))
        raise TransientWebhookError()

    increment_webhook_events("stripe", result["status"])
    return result
