"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Reservation metrics
reservation_attempts = Counter(
    'reservation_attempts_total',
    'Total reservation attempts',
    ['result']  # created, conflict, invalid, transient, error
)

reservation_latency = Histogram(
    'reservation_latency_seconds',
    'Reservation request latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

# Lock metrics
lock_wait_latency = Histogram(
    'reservation_lock_wait_seconds',
    'Time spent waiting for a property/booking lock',
    ['scope'],  # property, booking
    buckets=[0.0001, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0]
)

lock_timeouts = Counter(
    'reservation_lock_timeouts_total',
    'Lock acquisitions that gave up waiting',
    ['scope']
)

# Lifecycle metrics
booking_transitions = Counter(
    'booking_transitions_total',
    'Booking state transitions',
    ['target', 'result']  # result: applied, rejected
)

version_conflicts = Counter(
    'booking_version_conflicts_total',
    'Optimistic version conflicts on booking updates'
)

# Webhook metrics
webhook_events = Counter(
    'payment_webhook_events_total',
    'Payment provider events by outcome',
    ['event_type', 'outcome']
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set/invalidate, hit/miss/error
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def _scope(key: str) -> str:
    return key.split(":", 1)[0]


def record_reservation_attempt(result: str):
    """Record reservation attempt. Result: created, conflict, invalid, transient, error"""
    reservation_attempts.labels(result=result).inc()


def record_lock_wait(key: str, seconds: float):
    lock_wait_latency.labels(scope=_scope(key)).observe(seconds)


def record_lock_timeout(key: str):
    lock_timeouts.labels(scope=_scope(key)).inc()


def record_transition(target: str, applied: bool):
    booking_transitions.labels(target=target, result="applied" if applied else "rejected").inc()


def record_webhook_event(event_type: str, outcome: str):
    webhook_events.labels(event_type=event_type or "unknown", outcome=outcome).inc()


def record_cache_operation(operation: str, result: str):
    """Record cache operation. Result: hit, miss, ok, error"""
    cache_operations.labels(operation=operation, result=result).inc()
