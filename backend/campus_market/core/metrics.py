"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, CONTENT_TYPE_LATEST, generate_latest
from fastapi import Response

# Booking request metrics
request_creations = Counter(
    'booking_request_creations_total',
    'Booking request creation attempts',
    ['kind', 'result']  # created, conflict, invalid, validation_failed
)

request_responses = Counter(
    'booking_request_responses_total',
    'Owner responses to booking requests',
    ['kind', 'decision', 'result']  # accepted, rejected, conflict, capacity_conflict
)

capacity_conflicts = Counter(
    'booking_capacity_conflicts_total',
    'Acceptances refused because remaining capacity was insufficient',
    ['kind']
)

request_cancellations = Counter(
    'booking_request_cancellations_total',
    'Requester cancellations',
    ['kind', 'result']  # cancelled, noop, conflict
)

accept_latency = Histogram(
    'booking_accept_latency_seconds',
    'Latency of the conditional capacity decrement',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

# Sweeper metrics
sweeper_listings_expired = Counter(
    'sweeper_listings_expired_total',
    'Listings expired by the sweeper',
    ['kind']
)

sweeper_requests_cancelled = Counter(
    'sweeper_requests_cancelled_total',
    'Pending requests cascade-cancelled by listing expiry',
    ['kind']
)

sweeper_requests_purged = Counter(
    'sweeper_requests_purged_total',
    'Terminal requests deleted after the retention window',
    ['kind']
)

sweeper_failures = Counter(
    'sweeper_pass_failures_total',
    'Sweeper passes that failed and were left for the next tick',
    ['pass_name', 'kind']
)

# HTTP metrics, labelled by route template so cardinality stays bounded
http_requests = Counter(
    'http_requests_total',
    'HTTP requests served',
    ['method', 'route', 'status']
)

http_request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency',
    ['method', 'route'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)


def metrics_endpoint() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_request_creation(kind: str, result: str):
    request_creations.labels(kind=kind, result=result).inc()


def record_response(kind: str, decision: str, result: str):
    request_responses.labels(kind=kind, decision=decision, result=result).inc()
    if result == "capacity_conflict":
        capacity_conflicts.labels(kind=kind).inc()


def record_cancellation(kind: str, result: str):
    request_cancellations.labels(kind=kind, result=result).inc()


def record_cache_operation(operation: str, hit: bool):
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()


def record_http_request(method: str, route: str, status_code: int, seconds: float):
    http_requests.labels(method=method, route=route, status=str(status_code)).inc()
    http_request_duration.labels(method=method, route=route).observe(seconds)
