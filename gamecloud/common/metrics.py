"""Prometheus metric definitions shared across components."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


provisioning_requests_total = Counter(
    "provisioning_requests_total",
    "Total server provisioning requests",
    ["service"],
)
provisioning_failures_total = Counter(
    "provisioning_failures_total",
    "Provisioning requests that failed",
    ["service", "reason"],
)
processor_latency_seconds = Histogram(
    "processor_latency_seconds",
    "Payment processor call latency seconds",
    ["service"],
)
webhook_events_total = Counter(
    "webhook_events_total",
    "Webhook events handled, by reconciliation outcome",
    ["service", "event_type", "outcome"],
)
webhook_rejected_total = Counter(
    "webhook_rejected_total",
    "Webhook deliveries rejected before processing",
    ["service", "reason"],
)
reconciliation_conflicts_total = Counter(
    "reconciliation_conflicts_total",
    "Contradictory outcomes received for an already resolved payment intent",
    ["service"],
)
payment_e2e_seconds = Histogram(
    "payment_e2e_seconds",
    "Seconds from server request to resolved payment outcome",
    ["service", "terminal_state"],
)
fanout_subscribers = Gauge(
    "fanout_subscribers",
    "Current number of live status subscriptions",
    ["service"],
)
fanout_messages_total = Counter(
    "fanout_messages_total",
    "Status messages delivered to live subscribers",
    ["service"],
)
fanout_dropped_connections_total = Counter(
    "fanout_dropped_connections_total",
    "Subscriber connections dropped after a failed send",
    ["service"],
)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
