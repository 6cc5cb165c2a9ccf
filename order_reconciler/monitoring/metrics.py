"""
Prometheus metrics for order reconciliation monitoring.

Tracks:
- Order creation requests by outcome
- Reconciliation decisions by source and decision
- Webhook deliveries by result
- Provider API calls and latency
- Credential exchanges
"""
from prometheus_client import Counter, Histogram

# Order metrics
order_create_requests_total = Counter(
    "order_create_requests_total",
    "Total number of create-order requests",
    ["outcome"],  # created, validation_error, auth_error, provider_error
)

# Reconciliation metrics
reconciliation_decisions_total = Counter(
    "reconciliation_decisions_total",
    "Reconciliation engine decisions",
    ["source", "decision"],  # source: creation, webhook, poll
)

reconciliation_cas_retries_total = Counter(
    "reconciliation_cas_retries_total",
    "Compare-and-set attempts lost to a concurrent writer",
)

# Webhook metrics
webhook_requests_total = Counter(
    "webhook_requests_total",
    "Total webhook deliveries",
    ["result"],  # processed, invalid_signature, malformed, unknown_order
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

# Provider API metrics
provider_requests_total = Counter(
    "provider_requests_total",
    "Total provider API requests",
    ["operation", "status"],  # operation: create_order, query_status, token
)

provider_request_duration_seconds = Histogram(
    "provider_request_duration_seconds",
    "Provider API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0, 15.0),
)

# Credential metrics
credential_exchanges_total = Counter(
    "credential_exchanges_total",
    "Credential exchanges against the provider auth endpoint",
    ["result"],  # success, failure
)

poll_fallbacks_total = Counter(
    "poll_fallbacks_total",
    "Status polls answered from the store because the provider refresh failed",
    ["reason"],
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_order_create(outcome: str) -> None:
        """Record a create-order request."""
        order_create_requests_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_reconciliation_decision(source: str, decision: str) -> None:
        """Record a reconciliation decision."""
        reconciliation_decisions_total.labels(source=source, decision=decision).inc()

    @staticmethod
    def record_cas_retry() -> None:
        """Record a lost compare-and-set race."""
        reconciliation_cas_retries_total.inc()

    @staticmethod
    def record_webhook(result: str, duration_seconds: float) -> None:
        """Record webhook processing."""
        webhook_requests_total.labels(result=result).inc()
        webhook_processing_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_provider_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record a provider API call."""
        provider_requests_total.labels(operation=operation, status=status).inc()
        provider_request_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_credential_exchange(result: str) -> None:
        """Record a credential exchange."""
        credential_exchanges_total.labels(result=result).inc()

    @staticmethod
    def record_poll_fallback(reason: str) -> None:
        """Record a poll answered without a fresh provider status."""
        poll_fallbacks_total.labels(reason=reason).inc()


# Export singleton instance
metrics = MetricsCollector()
