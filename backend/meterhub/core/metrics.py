"""
Prometheus metrics for HTTP traffic, storage operations and queries.
"""
from prometheus_client import Counter, Histogram, Gauge, Info
from prometheus_client import CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST

from meterhub.core.config import settings

registry = CollectorRegistry()

app_info = Info('app', 'Application information', registry=registry)
app_info.info({
    'name': settings.APP_NAME,
    'version': settings.APP_VERSION,
    'storage_backend': settings.STORAGE_BACKEND,
})

# HTTP Metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=registry
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=registry
)

http_requests_in_progress = Gauge(
    'http_requests_in_progress',
    'Number of HTTP requests in progress',
    ['method', 'endpoint'],
    registry=registry
)

# Storage Metrics
backend_operation_duration_seconds = Histogram(
    'backend_operation_duration_seconds',
    'Persistence backend operation duration in seconds',
    ['backend', 'operation'],
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
    registry=registry
)

backend_errors_total = Counter(
    'backend_errors_total',
    'Total number of persistence backend failures',
    ['backend', 'operation'],
    registry=registry
)

sensor_data_stored_total = Counter(
    'sensor_data_stored_total',
    'Total number of sensor data rows stored',
    ['backend'],
    registry=registry
)

# Query Metrics
queries_total = Counter(
    'queries_total',
    'Total number of energy/power/carbon queries',
    ['query_type', 'status'],
    registry=registry
)

query_leaf_count = Histogram(
    'query_leaf_count',
    'Number of non-virtual leaf sources resolved per query',
    ['query_type'],
    buckets=[1, 2, 5, 10, 25, 50, 100, 250],
    registry=registry
)

# Error Metrics
errors_total = Counter(
    'errors_total',
    'Total number of errors',
    ['error_type', 'endpoint'],
    registry=registry
)


def get_metrics():
    """
    Get current metrics in Prometheus format.

    Returns:
        Prometheus metrics in text format
    """
    return generate_latest(registry)


def get_metrics_content_type():
    """
    Get the content type for Prometheus metrics.

    Returns:
        Content type string
    """
    return CONTENT_TYPE_LATEST
