"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from fastapi import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# Lifecycle metrics
booking_transitions = Counter(
    'booking_transitions_total',
    'Accepted booking status transitions',
    ['status']  # target status
)

bookings_created = Counter(
    'bookings_created_total',
    'Bookings created',
    ['initial_status']
)

# Assignment race metrics
assignment_attempts = Counter(
    'driver_assignment_attempts_total',
    'Driver accept attempts',
    ['result']  # won, already_assigned, expired, rejected, declined
)

driver_requests_expired = Counter(
    'driver_requests_expired_total',
    'Driver requests moved to expired by the sweep or lazily on accept'
)

online_drivers = Gauge(
    'online_drivers',
    'Drivers currently registered as online'
)

# Settlement metrics
settlement_additional_charges = Histogram(
    'settlement_additional_charges',
    'Additional charges computed at check-out',
    buckets=[0, 10, 25, 50, 75, 100, 150, 250, 500, 1000]
)

# Payment webhook metrics
payment_events = Counter(
    'payment_webhook_events_total',
    'Payment completion events',
    ['result']  # applied, duplicate, ignored
)

# Database metrics
db_operations = Counter(
    'db_operations_total',
    'Total unit-of-work operations',
    ['operation']  # read, write, retry
)

db_retries = Counter(
    'db_retry_attempts_total',
    'Unit of work retries due to version conflicts'
)

# Side effects
side_effect_failures = Counter(
    'side_effect_failures_total',
    'Notification or broadcast deliveries that failed',
    ['channel']  # notify, publish
)

outbox_dropped = Counter(
    'outbox_dropped_total',
    'Side effects dropped because the outbox queue was full'
)

redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# Convenience functions for instrumentation
def record_transition(status: str):
    booking_transitions.labels(status=status).inc()


def record_assignment_attempt(result: str):
    """Result: won, already_assigned, expired, rejected"""
    assignment_attempts.labels(result=result).inc()


def record_db_operation(operation: str):
    """Record unit-of-work operation. Operation: read, write, retry"""
    db_operations.labels(operation=operation).inc()
    if operation == "retry":
        db_retries.inc()


def record_payment_event(result: str):
    payment_events.labels(result=result).inc()


def record_side_effect_failure(channel: str):
    side_effect_failures.labels(channel=channel).inc()
