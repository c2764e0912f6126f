"""
Prometheus metrics endpoint.

Exposes webhook delivery metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# ============================================
# Dispatch Metrics
# ============================================

webhooks_dispatched = Counter(
    'webhooks_dispatched_total',
    'Webhook events recorded for delivery',
    ['event_type']
)

webhooks_skipped = Counter(
    'webhooks_skipped_total',
    'Webhook events dropped because no destination is configured',
    ['event_type']
)

# ============================================
# Delivery Metrics
# ============================================

webhook_attempts = Counter(
    'webhook_attempts_total',
    'Webhook HTTP attempts by outcome',
    ['event_type', 'outcome']
)

webhook_attempt_duration = Histogram(
    'webhook_attempt_duration_seconds',
    'Webhook HTTP attempt duration in seconds',
    ['event_type'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

webhooks_terminal = Counter(
    'webhooks_terminal_total',
    'Deliveries reaching a terminal status',
    ['event_type', 'status']
)

# ============================================
# Retry Scheduler Metrics
# ============================================

retry_batch_size = Gauge(
    'webhook_retry_batch_size',
    'Records selected by the last retry scheduler tick'
)

retry_ticks_failed = Counter(
    'webhook_retry_ticks_failed_total',
    'Retry scheduler ticks that raised'
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_webhook_dispatched(event_type: str):
    """Record an event queued for delivery."""
    webhooks_dispatched.labels(event_type=event_type).inc()


def track_webhook_skipped(event_type: str):
    """Record an event with no destination."""
    webhooks_skipped.labels(event_type=event_type).inc()


def track_webhook_attempt(event_type: str, outcome: str, duration_seconds: float):
    """Record one HTTP attempt."""
    webhook_attempts.labels(event_type=event_type, outcome=outcome).inc()
    webhook_attempt_duration.labels(event_type=event_type).observe(duration_seconds)


def track_webhook_terminal(event_type: str, status: str):
    """Record a delivery becoming DELIVERED or FAILED."""
    webhooks_terminal.labels(event_type=event_type, status=status).inc()


def update_retry_batch_size(size: int):
    """Update the last tick's batch size."""
    retry_batch_size.set(size)


def track_retry_tick_failed():
    """Record a scheduler tick failure."""
    retry_ticks_failed.inc()


# ============================================
# Prometheus Endpoint
# ============================================

@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns all registered metrics in Prometheus format.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
