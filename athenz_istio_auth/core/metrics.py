"""Prometheus metrics for both reconciliation loops."""

from prometheus_client import Counter, Gauge, Histogram

sync_duration = Histogram(
    "authz_sync_duration_seconds",
    "Time spent in one reconciliation pass",
    ["loop"],
)

sync_errors = Counter(
    "authz_sync_errors_total",
    "Total number of failed reconciliation passes",
    ["loop"],
)

queue_retries = Counter(
    "authz_queue_retries_total",
    "Total number of rate limited requeues",
    ["loop"],
)

store_operations = Counter(
    "authz_store_operations_total",
    "Total number of policy store writes",
    ["kind", "operation", "result"],
)

authority_errors = Counter(
    "authz_authority_errors_total",
    "Total number of failed Athenz domain lookups",
)

onboarded_services = Gauge(
    "authz_onboarded_services", "Number of services in the inclusion list"
)
