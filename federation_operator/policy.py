"""
Resource policies — the pluggable payload of the reconciliation engine.

The engine itself only knows "federated object" and "cluster object". A
policy decides what a cluster object should look like, which clusters may
receive one, and whether UID coordination and status aggregation apply.
"""

import logging
from typing import Optional

from .clients import INGRESSES
from .objects import (
    FIRST_CLUSTER_ANNOTATION,
    STATIC_IP_NAME_KEY_WRITABLE,
    annotations,
    desired_cluster_object,
    object_key,
    set_annotation,
    spec_equivalent,
)
from .status import StatusAggregator

logger = logging.getLogger("federation-policy")


class ResourcePolicy:
    """Propagate spec and metadata to every ready cluster."""

    kind: str = ""
    coordinate_uid: bool = False
    status_aggregator: Optional[StatusAggregator] = None

    def __init__(self, kind: Optional[str] = None):
        if kind is not None:
            self.kind = kind

    def desired_object(self, federated: dict, existing: Optional[dict]) -> dict:
        return desired_cluster_object(federated, existing)

    def needs_update(self, desired: dict, existing: dict) -> bool:
        return not spec_equivalent(desired, existing)

    def pin(self, federated: dict, ready_clusters: list[str]) -> Optional[dict]:
        """Return an updated federated object when placement must be recorded first."""
        return None

    def may_create_in(self, federated: dict, cluster_name: str) -> bool:
        return True


class IngressPolicy(ResourcePolicy):
    """
    Ingresses share one global IP across clusters.

    The object is created in the first cluster only, until that cluster's
    controller has reserved a static IP and its name has been copied back onto
    the federated ingress. Then every other cluster receives it with the same
    static IP name.
    """

    kind = INGRESSES
    coordinate_uid = True

    def __init__(self):
        super().__init__()
        self.status_aggregator = StatusAggregator()

    def pin(self, federated: dict, ready_clusters: list[str]) -> Optional[dict]:
        meta = annotations(federated)
        if meta.get(FIRST_CLUSTER_ANNOTATION) or meta.get(STATIC_IP_NAME_KEY_WRITABLE) or not ready_clusters:
            return None
        first = sorted(ready_clusters)[0]
        logger.info(f"No first cluster or static IP for ingress {object_key(federated)} — pinning {first}")
        return set_annotation(federated, FIRST_CLUSTER_ANNOTATION, first)

    def may_create_in(self, federated: dict, cluster_name: str) -> bool:
        meta = annotations(federated)
        if meta.get(STATIC_IP_NAME_KEY_WRITABLE):
            return True
        first = meta.get(FIRST_CLUSTER_ANNOTATION)
        return not first or first == cluster_name
