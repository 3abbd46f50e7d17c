"""Client capability interfaces consumed by the reconciliation core.

Concrete backends (the Kubernetes API in services/kubernetes_service.py, the
in-memory fakes in tests) plug in behind these protocols. Errors are raised as
kubernetes.client.ApiException.
"""

import threading
from typing import Callable, Iterator, Optional, Protocol

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"

INGRESSES = "ingresses"
CONFIGMAPS = "configmaps"
CLUSTERS = "clusters"


class ResourceClient(Protocol):
    """List/watch/CRUD access to one resource kind on one API server."""

    def list(self) -> tuple[list[dict], str]:
        """Return (items, resourceVersion of the list)."""
        ...

    def watch(self, resource_version: str, stop: threading.Event) -> Iterator[tuple[str, dict]]:
        """Yield (event_type, object) after resource_version until stop is set or the stream ends."""
        ...

    def create(self, obj: dict) -> dict: ...

    def update(self, obj: dict) -> dict: ...

    def delete(self, namespace: str, name: str) -> None: ...

    def get(self, namespace: str, name: str) -> Optional[dict]:
        """Return the object, or None when it does not exist."""
        ...


class ClusterClient(Protocol):
    """Fixed capability set returned by the client factory for any backend."""

    def resource(self, kind: str) -> ResourceClient: ...


# (Cluster record) -> ClusterClient; raising means the cluster is unavailable.
ClientFactory = Callable[[dict], ClusterClient]
