"""
Prometheus metrics for mediagen.
Tracks generation tasks, credit movements, providers and webhooks.
"""

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, CONTENT_TYPE_LATEST, REGISTRY, generate_latest
from fastapi import Response
import time
import structlog

logger = structlog.get_logger(__name__)

# Create custom registry for our metrics
registry = CollectorRegistry()

# Task lifecycle metrics
task_transitions = Counter(
    'mediagen_task_transitions_total',
    'Content task status transitions',
    ['kind', 'provider', 'status'],
    registry=registry
)

task_generation_duration = Histogram(
    'mediagen_task_generation_seconds',
    'Time from task creation to terminal status',
    ['kind', 'provider', 'status'],
    buckets=[5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0, 3600.0, float('inf')],
    registry=registry
)

# Ledger metrics
credit_movements = Counter(
    'mediagen_credit_movements_total',
    'Credits moved through the ledger',
    ['credit_type', 'direction'],
    registry=registry
)

insufficient_credit_rejections = Counter(
    'mediagen_insufficient_credit_rejections_total',
    'Requests rejected by the balance guard',
    ['credit_type'],
    registry=registry
)

# Queue metrics
queue_depth = Gauge(
    'mediagen_submission_queue_depth',
    'Jobs waiting in the submission queue',
    registry=registry
)

# Provider metrics
provider_errors = Counter(
    'mediagen_provider_errors_total',
    'Total number of provider errors',
    ['provider', 'error_type'],
    registry=registry
)

provider_request_duration = Histogram(
    'mediagen_provider_request_duration_seconds',
    'Provider request duration in seconds',
    ['provider', 'operation'],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, float('inf')],
    registry=registry
)

# Webhook metrics
webhook_events = Counter(
    'mediagen_webhook_events_total',
    'Total webhook events processed',
    ['source', 'status'],
    registry=registry
)


class MetricsCollector:
    """Centralized metrics collection and helper methods."""

    def __init__(self):
        self.registry = registry

    def get_metrics_response(self) -> Response:
        """Return Prometheus metrics as HTTP response."""
        # HTTP metrics from the instrumentator live in the default registry
        metrics_data = generate_latest(self.registry) + generate_latest(REGISTRY)
        return Response(
            content=metrics_data,
            media_type=CONTENT_TYPE_LATEST
        )


# Global metrics collector instance
metrics = MetricsCollector()


def increment_task_transition(kind: str, provider: str, status: str):
    """Count a task entering a status."""
    task_transitions.labels(kind=kind, provider=provider, status=status).inc()
    logger.debug("task_transition_counted", kind=kind, provider=provider, status=status)


def observe_task_duration(kind: str, provider: str, status: str, duration_seconds: float):
    """Record how long a task took to reach a terminal status."""
    task_generation_duration.labels(kind=kind, provider=provider, status=status).observe(duration_seconds)


def increment_credit_movement(credit_type: str, direction: str, amount: int):
    """Add ledger volume. ``direction`` is ``credit`` or ``debit``."""
    if amount > 0:
        credit_movements.labels(credit_type=credit_type, direction=direction).inc(amount)


def increment_insufficient_credits(credit_type: str):
    insufficient_credit_rejections.labels(credit_type=credit_type).inc()


def set_queue_depth(depth: int):
    """Set current submission queue depth."""
    queue_depth.set(depth)


def increment_provider_error(provider: str, error_type: str):
    """Increment provider error counter."""
    provider_errors.labels(provider=provider, error_type=error_type).inc()
    logger.warning(
        "provider_error_recorded",
        provider=provider,
        error_type=error_type
    )


def observe_provider_request_duration(provider: str, operation: str, duration_seconds: float):
    """Record provider request duration."""
    provider_request_duration.labels(provider=provider, operation=operation).observe(duration_seconds)


def increment_webhook_events(source: str, status: str):
    """Increment webhook event counter."""
    webhook_events.labels(source=source, status=status).inc()


class ProviderMetricsContext:
    """Context manager for automatic provider metrics recording."""

    def __init__(self, provider: str, operation: str):
        self.provider = provider
        self.operation = operation
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time:
            duration = time.time() - self.start_time
            observe_provider_request_duration(self.provider, self.operation, duration)
            if exc_type:
                increment_provider_error(self.provider, exc_type.__name__)
