"""Prometheus metrics for feed synchronization."""

from prometheus_client import Counter, Histogram

# HTTP metrics
REQUEST_COUNT = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "endpoint", "status"]
)
REQUEST_DURATION = Histogram(
    "http_request_duration_seconds", "HTTP request duration", ["method", "endpoint"]
)

# Cycle metrics
CYCLE_COUNT = Counter("feed_update_cycles_total", "Feed update cycles", ["result"])
CYCLE_DURATION = Histogram(
    "feed_update_cycle_duration_seconds",
    "Feed update cycle duration",
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1200, 1800, 3600),
)
SOURCE_FAILURES = Counter(
    "threat_source_failures_total", "Failed threat source fetches", ["source"]
)
INDICATORS_PUBLISHED = Counter(
    "indicators_published_total", "Indicators appended to downstream lists"
)
DOWNSTREAM_RETRIES = Counter(
    "downstream_retries_total", "Rate-limited downstream requests that were retried"
)
