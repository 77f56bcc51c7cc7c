"""Prometheus metrics for logpeek"""

from prometheus_client import Counter, Gauge, Histogram

# ============================================================================
# Request Metrics
# ============================================================================

# HTTP responses by method, endpoint and status
http_responses_total = Counter(
    'logpeek_http_responses_total',
    'Total HTTP responses by endpoint and status code',
    ['method', 'endpoint', 'status_code'],
)

# Errors by type
errors_total = Counter(
    'logpeek_errors_total',
    'Total errors by type',
    ['error_type'],  # invalid_regex, plugin_not_found, file_not_found, internal_error, ...
)

analytics_requests_total = Counter('logpeek_analytics_requests_total', 'Total analytics requests', ['status'])

error_summary_requests_total = Counter(
    'logpeek_error_summary_requests_total',
    'Total error summary requests',
    ['source'],  # cache, scan, disabled
)


# ============================================================================
# Performance Metrics
# ============================================================================

analytics_duration_seconds = Histogram(
    'logpeek_analytics_duration_seconds',
    'Time spent collecting and aggregating analytics',
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    # 10ms to 60s - bounded by files and lines per file
)

error_summary_duration_seconds = Histogram(
    'logpeek_error_summary_duration_seconds',
    'Time spent computing an error summary (cache misses only)',
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)


# ============================================================================
# Reader Metrics
# ============================================================================

lines_read_total = Counter('logpeek_lines_read_total', 'Total raw lines read from log files')

files_scanned_total = Counter(
    'logpeek_files_scanned_total',
    'Total files read by aggregation scans',
    ['scan'],  # analytics, error_summary
)

follow_polling_fallbacks_total = Counter(
    'logpeek_follow_polling_fallbacks_total', 'Number of followers that switched from file watching to polling'
)


# ============================================================================
# Cache Metrics
# ============================================================================

error_summary_cache_hits_total = Counter('logpeek_error_summary_cache_hits_total', 'Number of error summary cache hits')

error_summary_cache_misses_total = Counter(
    'logpeek_error_summary_cache_misses_total', 'Number of error summary cache misses'
)


# ============================================================================
# Real-time Metrics
# ============================================================================

active_follow_subscriptions = Gauge('logpeek_active_follow_subscriptions', 'Number of active follow subscriptions')

active_websocket_connections = Gauge('logpeek_active_websocket_connections', 'Number of open log viewer WebSockets')


# ============================================================================
# Helper Functions
# ============================================================================


def record_error(error_type: str):
    """
    Record an error occurrence.

    Args:
        error_type: Type of error (invalid_regex, plugin_not_found, file_not_found, etc.)
    """
    errors_total.labels(error_type=error_type).inc()


def record_http_response(method: str, endpoint: str, status_code: int):
    """
    Record HTTP response.

    Args:
        method: HTTP method (GET, POST, etc.)
        endpoint: Endpoint path
        status_code: HTTP status code
    """
    http_responses_total.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()


def record_lines_read(count: int):
    if count > 0:
        lines_read_total.inc(count)


def record_file_scanned(scan: str):
    files_scanned_total.labels(scan=scan).inc()


def record_analytics_request(status: str, duration: float):
    analytics_requests_total.labels(status=status).inc()
    analytics_duration_seconds.observe(duration)


def record_error_summary(from_cache: bool, duration: float | None = None):
    """Record an error summary lookup; duration is only observed for real scans."""
    if from_cache:
        error_summary_cache_hits_total.inc()
        error_summary_requests_total.labels(source='cache').inc()
        return
    error_summary_cache_misses_total.inc()
    error_summary_requests_total.labels(source='scan').inc()
    if duration is not None:
        error_summary_duration_seconds.observe(duration)


def record_error_summary_disabled():
    error_summary_requests_total.labels(source='disabled').inc()


def record_polling_fallback():
    follow_polling_fallbacks_total.inc()
