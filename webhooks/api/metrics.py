"""Prometheus metrics for the webhook service.

Exposes key metrics for monitoring:
- Request counts by endpoint and status
- Request duration histograms
- Invoice ingestion outcomes and match strategies
- SSO verification and user sync outcomes

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Invoice ingestion metrics
invoices_received_total = Counter(
    "invoices_received_total",
    "Total supplier invoices received",
    ["status"],  # matched, unmatched, failed
)

invoice_matches_total = Counter(
    "invoice_matches_total",
    "Invoice match outcomes by strategy",
    ["match_type"],
)

# SSO metrics
sso_verifications_total = Counter(
    "sso_verifications_total",
    "Total SSO verification requests",
    ["result"],  # success or error code
)

user_sync_requests_total = Counter(
    "user_sync_requests_total",
    "Total hub user sync requests",
    ["mode"],  # existing, created, existing_recovered, unrecoverable, failed
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
