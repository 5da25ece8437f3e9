"""
Prometheus metrics for order lifecycle monitoring.

Tracks:
- Purchase requests by result
- Payment callbacks by outcome and result
- Deliveries by policy and status
- Renderer duration and errors
- Notifications sent and fan-out failures
- Store unit-of-work duration
"""
from prometheus_client import Counter, Histogram

# Purchase metrics
purchase_requests_total = Counter(
    "purchase_requests_total",
    "Total number of purchase requests",
    ["result"],  # created, or the rejecting error class
)

# Payment callback metrics
payment_callbacks_total = Counter(
    "payment_callbacks_total",
    "Total payment provider callbacks",
    ["outcome", "result"],  # result: applied, replayed, conflict, unknown, invariant
)

payment_callback_duration_seconds = Histogram(
    "payment_callback_duration_seconds",
    "Payment callback reconciliation duration in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Delivery metrics
deliveries_total = Counter(
    "deliveries_total",
    "Total delivery attempts",
    ["policy", "status"],  # status: delivered, already_delivered, deferred, failed, rejected
)

renderer_duration_seconds = Histogram(
    "renderer_duration_seconds",
    "Document renderer call duration in seconds",
    ["policy"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

renderer_errors_total = Counter(
    "renderer_errors_total",
    "Total document renderer failures",
    ["error_type"],  # timeout, crash
)

# Notification metrics
notifications_sent_total = Counter(
    "notifications_sent_total",
    "Total notification rows written",
    ["scope", "kind"],  # scope: user, global
)

notification_fanout_failures_total = Counter(
    "notification_fanout_failures_total",
    "Per-recipient writes that failed during a global send",
)

# Store metrics
store_operation_duration_seconds = Histogram(
    "store_operation_duration_seconds",
    "Store unit-of-work duration in seconds",
    ["operation"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_purchase_request(result: str) -> None:
        """Record a purchase request."""
        purchase_requests_total.labels(result=result).inc()

    @staticmethod
    def record_payment_callback(outcome: str, result: str, duration_seconds: float) -> None:
        """Record a payment callback."""
        payment_callbacks_total.labels(outcome=outcome, result=result).inc()
        payment_callback_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_delivery(policy: str, status: str) -> None:
        """Record a delivery attempt."""
        deliveries_total.labels(policy=policy, status=status).inc()

    @staticmethod
    def record_renderer_call(policy: str, duration_seconds: float) -> None:
        """Record a successful renderer call."""
        renderer_duration_seconds.labels(policy=policy).observe(duration_seconds)

    @staticmethod
    def record_renderer_error(error_type: str) -> None:
        """Record a renderer failure."""
        renderer_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def record_notifications(scope: str, kind: str, count: int, failed: int = 0) -> None:
        """Record notification rows written and failed."""
        if count:
            notifications_sent_total.labels(scope=scope, kind=kind).inc(count)
        if failed:
            notification_fanout_failures_total.inc(failed)

    @staticmethod
    def record_store_operation(operation: str, duration_seconds: float) -> None:
        """Record store unit-of-work duration."""
        store_operation_duration_seconds.labels(operation=operation).observe(duration_seconds)


# Export singleton instance
metrics = MetricsCollector()
