"""Prometheus metrics for API service.

Exposes key metrics for monitoring:
- Request counts by endpoint and status
- Request duration histograms
- Invoice lifecycle counters
- Payment verification outcomes and latency

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

# Invoice lifecycle metrics
invoices_created_total = Counter(
    "invoices_created_total",
    "Total invoices issued",
)

invoices_paid_total = Counter(
    "invoices_paid_total",
    "Total invoices settled on chain",
)

receipts_issued_total = Counter(
    "receipts_issued_total",
    "Total receipts issued for paid invoices",
)

# Verification metrics
payment_verifications_total = Counter(
    "payment_verifications_total",
    "Total on-chain payment verification attempts",
    ["outcome"],  # matched, or a VerificationFailure value
)

payment_verification_duration_seconds = Histogram(
    "payment_verification_duration_seconds",
    "Duration of on-chain payment verification in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
