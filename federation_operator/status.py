"""
StatusAggregator — relay load-balancer status from member clusters.

The authoritative cluster is the one pinned by the first-cluster annotation.
Without a pin, the first cluster (by name) whose object reports a non-empty
load-balancer status is used. Its status.loadBalancer is copied onto the
federated object, and its read-only static IP name is copied into the
federated writable annotation when the federated object has none.
"""

import copy
import logging
from typing import Optional

from .objects import (
    FIRST_CLUSTER_ANNOTATION,
    STATIC_IP_NAME_KEY_READONLY,
    STATIC_IP_NAME_KEY_WRITABLE,
    annotations,
    load_balancer_ingress,
    object_key,
)

logger = logging.getLogger("status-aggregator")


class StatusAggregator:

    @staticmethod
    def authoritative_cluster(federated: dict, cluster_objects: dict[str, dict]) -> Optional[str]:
        pinned = annotations(federated).get(FIRST_CLUSTER_ANNOTATION)
        if pinned:
            return pinned if pinned in cluster_objects else None
        for name in sorted(cluster_objects):
            if load_balancer_ingress(cluster_objects[name]):
                return name
        return None

    def aggregate(self, federated: dict, cluster_objects: dict[str, dict]) -> Optional[dict]:
        """
        Return an updated copy of the federated object when the authoritative
        cluster reports a different load-balancer status or a static IP name
        the federated object lacks; None when nothing needs writing.
        """
        source = self.authoritative_cluster(federated, cluster_objects)
        if source is None:
            return None
        cluster_obj = cluster_objects[source]
        updated = copy.deepcopy(federated)
        changed = False

        cluster_lb = (cluster_obj.get("status") or {}).get("loadBalancer") or {}
        if load_balancer_ingress(cluster_obj) != load_balancer_ingress(federated):
            status = updated.setdefault("status", {}) or {}
            status["loadBalancer"] = {"ingress": copy.deepcopy(cluster_lb.get("ingress") or [])}
            updated["status"] = status
            logger.info(f"Copying load balancer status of {object_key(federated)} from cluster {source}: "
                        f"{status['loadBalancer']['ingress']}")
            changed = True

        cluster_ip_name = annotations(cluster_obj).get(STATIC_IP_NAME_KEY_READONLY)
        if cluster_ip_name and not annotations(federated).get(STATIC_IP_NAME_KEY_WRITABLE):
            meta = updated["metadata"]
            meta["annotations"] = dict(meta.get("annotations") or {})
            meta["annotations"][STATIC_IP_NAME_KEY_WRITABLE] = cluster_ip_name
            logger.info(f"Copying static IP name {cluster_ip_name} of {object_key(federated)} from cluster {source}")
            changed = True

        return updated if changed else None
