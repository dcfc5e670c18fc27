"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_attempts = Counter(
    'booking_attempts_total',
    'Total booking creation attempts',
    ['outcome']  # success, conflict, rejected, error
)

booking_latency = Histogram(
    'booking_latency_seconds',
    'Booking creation latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

seat_ledger_conflicts = Counter(
    'seat_ledger_conflicts_total',
    'Seat-allocation ledger unique constraint violations'
)

status_transitions = Counter(
    'booking_status_transitions_total',
    'Reservation status transitions',
    ['to_status']
)

cancellations = Counter(
    'booking_cancellations_total',
    'Cancellation requests',
    ['result']  # cancelled, rejected
)

# Store metrics
store_errors = Counter(
    'reservation_store_errors_total',
    'Transient reservation store failures',
    ['operation']
)

# Notification metrics
notifications = Counter(
    'booking_notifications_total',
    'Lifecycle notifications',
    ['result']  # published, skipped, failed
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
def record_booking_attempt(outcome: str):
    """Record booking attempt. Outcome: success, conflict, rejected, error"""
    booking_attempts.labels(outcome=outcome).inc()


def record_transition(to_status: str):
    status_transitions.labels(to_status=to_status).inc()


def record_cancellation(cancelled: bool):
    cancellations.labels(result="cancelled" if cancelled else "rejected").inc()


def record_store_error(operation: str):
    store_errors.labels(operation=operation).inc()


def record_notification(result: str):
    """Record notification outcome. Result: published, skipped, failed"""
    notifications.labels(result=result).inc()
