"""Prometheus metrics for HTTP requests and MongoDB operations."""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "Duration of HTTP requests in seconds",
    ["method", "path", "status"],
)

HTTP_REQUESTS = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "path", "status"],
)

MONGO_OPERATION_DURATION = Histogram(
    "mongo_operation_duration_seconds",
    "Duration of MongoDB operations in seconds",
    ["operation", "database", "collection"],
)

MONGO_OPERATION_ERRORS = Counter(
    "mongo_operation_errors_total",
    "Total number of MongoDB operation errors",
    ["operation", "database", "collection"],
)


def record_http_request(method, path, status, duration):
    HTTP_REQUEST_DURATION.labels(method, path, str(status)).observe(duration)
    HTTP_REQUESTS.labels(method, path, str(status)).inc()


def record_mongo_operation(operation, database, collection, duration, failed=False):
    MONGO_OPERATION_DURATION.labels(operation, database, collection).observe(duration)
    if failed:
        MONGO_OPERATION_ERRORS.labels(operation, database, collection).inc()


def render():
    """Return (body, content type) for the /metrics endpoint."""
    return generate_latest(), CONTENT_TYPE_LATEST
