"""
Configuration module — all settings from env vars with sensible defaults.
Follows 12-factor app methodology.

Durations are seconds (floats) so tests can shrink them with
dataclasses.replace(settings, SMALL_DELAY=0.1, ...).
"""
import os
from dataclasses import dataclass


def _seconds(name: str, default: float) -> float:
    return float(os.environ.get(name, str(default)))


@dataclass(frozen=True)
class Settings:
    # Kubernetes (federation control plane)
    KUBECONFIG: str = os.environ.get("KUBECONFIG", "")
    IN_CLUSTER: bool = os.environ.get("IN_CLUSTER", "false").lower() == "true"

    # Cluster membership CRD
    CLUSTER_GROUP: str = os.environ.get("CLUSTER_GROUP", "federation.k8s.io")
    CLUSTER_VERSION: str = os.environ.get("CLUSTER_VERSION", "v1beta1")
    CLUSTER_PLURAL: str = os.environ.get("CLUSTER_PLURAL", "clusters")

    # Reconciliation delays
    CLUSTER_AVAILABLE_DELAY: float = _seconds("CLUSTER_AVAILABLE_DELAY", 20)
    INGRESS_REVIEW_DELAY: float = _seconds("INGRESS_REVIEW_DELAY", 10)
    CONFIGMAP_REVIEW_DELAY: float = _seconds("CONFIGMAP_REVIEW_DELAY", 10)
    SMALL_DELAY: float = _seconds("SMALL_DELAY", 3)
    UPDATE_TIMEOUT: float = _seconds("UPDATE_TIMEOUT", 30)

    # Transient failure backoff
    BACKOFF_INITIAL: float = _seconds("BACKOFF_INITIAL", 5)
    BACKOFF_MAX: float = _seconds("BACKOFF_MAX", 60)

    # Informers
    INFORMER_RESYNC_PERIOD: float = _seconds("INFORMER_RESYNC_PERIOD", 300)
    WATCH_TIMEOUT: int = int(os.environ.get("WATCH_TIMEOUT", "60"))

    # Concurrency: reconcile workers per watched resource kind
    MAX_WORKERS: int = int(os.environ.get("MAX_WORKERS", "3"))

    # Optional Redis Stream for reconcile events
    REDIS_URL: str = os.environ.get("REDIS_URL", "")

    # Admin API
    API_HOST: str = os.environ.get("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.environ.get("API_PORT", "8080"))
    RATE_LIMIT: str = os.environ.get("RATE_LIMIT", "30/minute")
    CORS_ORIGINS: str = os.environ.get("CORS_ORIGINS", "*")


settings = Settings()
