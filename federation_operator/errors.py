"""Domain errors raised inside the reconciliation core.

Client-side failures are reported as kubernetes.client.ApiException (status
404 = not found, 409 = conflict); these helpers keep the checks in one place.
"""
from kubernetes.client import ApiException


class FederationError(Exception):
    """Base class for reconciliation errors that end in a requeue."""


class ClientFactoryError(FederationError):
    """A member cluster client could not be built; the cluster is unavailable."""

    def __init__(self, cluster_name: str, cause: Exception):
        super().__init__(f"cannot build client for cluster {cluster_name}: {cause}")
        self.cluster_name = cluster_name
        self.cause = cause


class UpdateTimeoutError(FederationError):
    """A bounded wait on per-cluster operations or cache convergence expired."""


def is_not_found(exc: Exception) -> bool:
    return isinstance(exc, ApiException) and exc.status == 404


def is_conflict(exc: Exception) -> bool:
    return isinstance(exc, ApiException) and exc.status == 409


def not_found(kind: str, key: str) -> ApiException:
    return ApiException(status=404, reason=f"{kind} {key} not found")


def conflict(kind: str, key: str, reason: str = "already exists") -> ApiException:
    return ApiException(status=409, reason=f"{kind} {key} {reason}")
