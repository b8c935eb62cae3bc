"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking state machine
booking_transitions = Counter(
    'booking_transitions_total',
    'Booking state transitions',
    ['transition', 'result']  # request/accept/reject/cancel/expire/confirm/complete x success/stale/error
)

booking_transition_latency = Histogram(
    'booking_transition_latency_seconds',
    'Latency of user-initiated booking transitions',
    ['transition'],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

# Points ledger
ledger_operations = Counter(
    'ledger_operations_total',
    'Points ledger mutations',
    ['operation', 'result']  # credit/debit x success/insufficient/frozen
)

ledger_points_moved = Counter(
    'ledger_points_moved_total',
    'Absolute points moved through the ledger',
    ['transaction_type']
)

ledger_integrity_violations = Counter(
    'ledger_integrity_violations_total',
    'Accounts frozen after a balance/transaction mismatch'
)

# Availability
availability_conflicts = Counter(
    'availability_conflicts_total',
    'Reservation attempts rejected because dates were taken'
)

# Subscription webhooks
webhook_events = Counter(
    'subscription_webhook_events_total',
    'Subscription webhook events',
    ['kind', 'result']  # applied, replay, ignored, error
)

# Background scheduler
scheduler_job_runs = Counter(
    'scheduler_job_runs_total',
    'Background job executions',
    ['job', 'result']  # success, error
)

scheduler_job_latency = Histogram(
    'scheduler_job_latency_seconds',
    'Background job duration',
    ['job'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0]
)

# Notifications
notification_failures = Counter(
    'notification_failures_total',
    'Notifications that could not be delivered to the notifier backend',
    ['kind']
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
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
def record_booking_transition(transition: str, result: str):
    """Record a booking transition. Result: success, stale, error"""
    booking_transitions.labels(transition=transition, result=result).inc()

def record_ledger_operation(operation: str, result: str):
    """Record ledger mutation outcome. Operation: credit, debit"""
    ledger_operations.labels(operation=operation, result=result).inc()

def record_points_moved(transaction_type: str, amount: int):
    ledger_points_moved.labels(transaction_type=transaction_type).inc(abs(amount))

def record_webhook_event(kind: str, result: str):
    webhook_events.labels(kind=kind, result=result).inc()

def record_job_run(job: str, result: str):
    scheduler_job_runs.labels(job=job, result=result).inc()

def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
