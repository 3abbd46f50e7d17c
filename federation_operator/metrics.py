"""Prometheus metrics for the reconciliation core."""

from prometheus_client import Counter, Gauge

RECONCILES = Counter(
    "federation_reconciles_total",
    "Reconciliation attempts by resource kind and outcome",
    ["kind", "result"],
)
CLUSTER_OPERATIONS = Counter(
    "federation_cluster_operations_total",
    "Per-cluster write operations issued by the federated updater",
    ["kind", "operation", "result"],
)
QUEUE_DEPTH = Gauge(
    "federation_queue_depth",
    "Keys waiting in a work queue (ready plus delayed)",
    ["queue"],
)
READY_CLUSTERS = Gauge(
    "federation_ready_clusters",
    "Member clusters with a running watch session",
    ["kind"],
)
UID_OVERWRITES = Counter(
    "federation_uid_overwrites_total",
    "UID records overwritten to match the first cluster",
)


def record_reconcile(kind: str, result: str):
    RECONCILES.labels(kind=kind, result=result).inc()


def record_operation(kind: str, operation: str, result: str):
    CLUSTER_OPERATIONS.labels(kind=kind, operation=operation, result=result).inc()
