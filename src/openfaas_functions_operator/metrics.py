"""Prometheus metrics for the OpenFaaS Functions Operator."""

from prometheus_client import Counter, Gauge, Histogram

# Reconciliation metrics
reconcile_total = Counter(
    "openfaas_functions_operator_reconcile_total",
    "Total number of reconciliations",
    ["result"],
)

reconcile_duration_seconds = Histogram(
    "openfaas_functions_operator_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
)

error_total = Counter(
    "openfaas_functions_operator_error_total",
    "Total number of reconciliation errors",
    ["error_type"],
)

# Child resource metrics
child_operations_total = Counter(
    "openfaas_functions_operator_child_operations_total",
    "Total number of operations on child Deployments and Services",
    ["kind", "operation", "result"],
)

drift_detected_total = Counter(
    "openfaas_functions_operator_drift_detected_total",
    "Total number of child resource drift detections",
    ["kind", "strategy"],
)

status_writes_total = Counter(
    "openfaas_functions_operator_status_writes_total",
    "Total number of Function status writes",
    ["reason"],
)

# API call metrics
api_call_total = Counter(
    "openfaas_functions_operator_api_call_total",
    "Total number of API calls",
    ["operation", "result"],
)

api_call_duration_seconds = Histogram(
    "openfaas_functions_operator_api_call_duration_seconds",
    "Duration of API calls in seconds",
    ["operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
)

# Work queue metrics
queue_depth = Gauge(
    "openfaas_functions_operator_queue_depth",
    "Number of keys waiting in the work queue",
)

queue_retries_total = Counter(
    "openfaas_functions_operator_queue_retries_total",
    "Total number of rate limited re-enqueues",
)
