"""
Sentry integration for mediagen.
Provides exception tracking and performance monitoring.
"""

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.celery import CeleryIntegration
import structlog

from mediagen.core.settings import settings

logger = structlog.get_logger(__name__)

# Transactions never worth sending
IGNORED_TRANSACTIONS = ["/health", "/metrics"]


def init_sentry(component: str = "api"):
    """Initialize Sentry for the API or the Celery worker."""
    if not settings.sentry_dsn:
        logger.info("Sentry DSN not configured, skipping Sentry initialization")
        return

    integrations = [SqlalchemyIntegration(), CeleryIntegration(monitor_beat_tasks=True)]
    if component == "api":
        integrations.append(FastApiIntegration())

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=settings.app_version,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        attach_stacktrace=True,
        send_default_pii=False,
        integrations=integrations,
        before_send=_before_send_filter,
        before_send_transaction=_before_send_transaction_filter,
    )

    sentry_sdk.set_tag("service", "mediagen")
    sentry_sdk.set_tag("component", component)

    logger.info(
        "sentry_initialized",
        component=component,
        environment=settings.environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
    )


def _before_send_filter(event, hint):
    """Scrub credentials and webhook signatures before sending to Sentry."""
    headers = event.get("request", {}).get("headers", {})
    for name in ("authorization", "stripe-signature", "x-webhook-signature", "x-webhook-secret"):
        if name in headers:
            headers[name] = "[Filtered]"

    if event.get("transaction") in IGNORED_TRANSACTIONS:
        return None

    return event


def _before_send_transaction_filter(event, hint):
    if event.get("transaction") in IGNORED_TRANSACTIONS:
        return None
    return event


def capture_task_context(task_id: str, user_id: str = None, provider: str = None):
    """Tag the current Sentry scope with the content task being handled."""
    sentry_sdk.set_tag("task_id", task_id)
    if user_id:
        sentry_sdk.set_user({"id": user_id})
    if provider:
        sentry_sdk.set_tag("provider", provider)
