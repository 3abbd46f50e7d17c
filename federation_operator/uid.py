"""
UidCoordinator — converge the cluster-scoped ingress UID across member clusters.

Every member cluster keeps a UID record (ConfigMap kube-system/ingress-uid,
data key "uid") that its cloud load-balancer controller uses to name
provisioned resources. All clusters must share one value so the federated
ingress ends up with one global load balancer.

Protocol:
  - The master cluster is the one whose Cluster record carries the UID
    annotation. The annotation mirrors the master's own UID record.
  - While no cluster is master, reconciling an object elects the cluster
    named by its first-cluster annotation: its record is read (or created
    with a fresh UID) and the UID is written onto its Cluster record.
  - Every other ready cluster gets its record read or created, and
    overwritten when it differs from the master's.
  - When the master's own record changes, the annotation is refreshed and
    followers are re-converged on the next pass.
UID records are never deleted here.
"""

import copy
import logging
import threading
import uuid
from typing import Callable, Optional

from kubernetes.client import ApiException

from .clients import ResourceClient
from .errors import is_conflict
from .informer import FederatedInformer
from .metrics import UID_OVERWRITES
from .objects import FIRST_CLUSTER_ANNOTATION, UID_ANNOTATION_KEY, annotations, object_key, set_annotation

logger = logging.getLogger("uid-coordinator")

UID_CONFIGMAP_NAME = "ingress-uid"
UID_CONFIGMAP_NAMESPACE = "kube-system"
UID_CONFIGMAP_KEY = f"{UID_CONFIGMAP_NAMESPACE}/{UID_CONFIGMAP_NAME}"
UID_KEY = "uid"
PROVIDER_UID_KEY = "provider-uid"


def is_uid_configmap(obj: dict) -> bool:
    return object_key(obj) == UID_CONFIGMAP_KEY


def new_uid_configmap(uid: str, provider_uid: Optional[str] = None) -> dict:
    data = {UID_KEY: uid}
    if provider_uid:
        data[PROVIDER_UID_KEY] = provider_uid
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": UID_CONFIGMAP_NAME, "namespace": UID_CONFIGMAP_NAMESPACE},
        "data": data,
    }


def _generate_uid() -> str:
    return uuid.uuid4().hex[:16]


class UidCoordinator:

    def __init__(self, configmap_informer: FederatedInformer, cluster_client: ResourceClient,
                 uid_generator: Callable[[], str] = _generate_uid, update_timeout: float = 30.0):
        self.informer = configmap_informer
        self.cluster_client = cluster_client
        self.uid_generator = uid_generator
        self.update_timeout = update_timeout
        # object workers and the cluster worker may converge the same cluster
        self._lock = threading.Lock()

    # ------------------------------------------------------------------

    def master_cluster(self) -> Optional[dict]:
        """The ready cluster whose record carries the UID annotation, if any."""
        masters = [c for c in self.informer.get_ready_clusters() if annotations(c).get(UID_ANNOTATION_KEY)]
        if len(masters) > 1:
            logger.warning(f"Multiple clusters carry {UID_ANNOTATION_KEY}: "
                           f"{[c['metadata']['name'] for c in masters]} — using {masters[0]['metadata']['name']}")
        return masters[0] if masters else None

    def reconcile_object(self, obj: dict) -> Optional[str]:
        """
        Converge UID records for every ready cluster on behalf of a federated
        object. Returns the master UID, or None while no master can be chosen.
        """
        first_cluster = annotations(obj).get(FIRST_CLUSTER_ANNOTATION)
        names = [c["metadata"]["name"] for c in self.informer.get_ready_clusters()]
        if first_cluster in names:
            names.remove(first_cluster)
            names.insert(0, first_cluster)

        uid = None
        for name in names:
            result = self.reconcile_cluster(name, first_cluster=first_cluster)
            if uid is None:
                uid = result
        return uid

    def reconcile_cluster(self, cluster_name: str, first_cluster: Optional[str] = None) -> Optional[str]:
        """
        Bring one cluster's UID record in line with the master. Returns the UID
        the cluster now agrees on, or None when it cannot converge yet (cluster
        not ready or not synced, or no master and this cluster is not the
        nominated first cluster). API errors propagate to the caller.
        """
        with self._lock:
            return self._reconcile_cluster(cluster_name, first_cluster)

    def _reconcile_cluster(self, cluster_name: str, first_cluster: Optional[str]) -> Optional[str]:
        cluster = self.informer.get_ready_cluster(cluster_name)
        if cluster is None or not self.informer.cluster_synced(cluster_name):
            logger.debug(f"Cluster {cluster_name} not ready/synced for UID reconciliation")
            return None

        master = self.master_cluster()
        if master is None:
            if first_cluster != cluster_name:
                logger.debug(f"No UID master yet; {cluster_name} waits for first cluster {first_cluster}")
                return None
            record = self._ensure_record(cluster_name, self.uid_generator())
            uid = record["data"][UID_KEY]
            logger.info(f"Cluster {cluster_name} elected UID master with uid {uid}")
            self._annotate_cluster(cluster, uid)
            return uid

        master_name = master["metadata"]["name"]
        if master_name == cluster_name:
            record = self._ensure_record(cluster_name, annotations(master)[UID_ANNOTATION_KEY])
            uid = record["data"][UID_KEY]
            if annotations(master).get(UID_ANNOTATION_KEY) != uid:
                logger.info(f"UID record of master {cluster_name} changed to {uid} — refreshing annotation")
                self._annotate_cluster(master, uid)
            return uid

        master_uid = annotations(master)[UID_ANNOTATION_KEY]
        master_record = self.informer.get_target_store().get_by_key(master_name, UID_CONFIGMAP_KEY)
        provider_uid = ((master_record or {}).get("data") or {}).get(PROVIDER_UID_KEY)
        record = self._ensure_record(cluster_name, master_uid, provider_uid)
        if record["data"].get(UID_KEY) != master_uid:
            logger.info(f"Overwriting UID in cluster {cluster_name}: "
                        f"{record['data'].get(UID_KEY)} -> {master_uid} (master {master_name})")
            updated = copy.deepcopy(record)
            updated["data"][UID_KEY] = master_uid
            if provider_uid:
                updated["data"][PROVIDER_UID_KEY] = provider_uid
            self._client(cluster_name).update(updated)
            UID_OVERWRITES.inc()
        return master_uid

    # ------------------------------------------------------------------

    def _client(self, cluster_name: str) -> ResourceClient:
        client = self.informer.get_cluster_client(cluster_name)
        if client is None:
            raise RuntimeError(f"cluster {cluster_name} is not available")
        return client

    def _ensure_record(self, cluster_name: str, uid: str, provider_uid: Optional[str] = None) -> dict:
        """Cached UID record for the cluster, created with uid when absent."""
        client = self._client(cluster_name)
        record = self.informer.get_target_store().get_by_key(cluster_name, UID_CONFIGMAP_KEY)
        if record is None:
            logger.info(f"Creating UID record in cluster {cluster_name} with uid {uid}")
            try:
                return client.create(new_uid_configmap(uid, provider_uid))
            except ApiException as e:
                if not is_conflict(e):
                    raise
                # created by someone else since the cache was filled
                record = client.get(UID_CONFIGMAP_NAMESPACE, UID_CONFIGMAP_NAME)
                if record is None:
                    raise
        record["data"] = dict(record.get("data") or {})
        if not record["data"].get(UID_KEY):
            record["data"][UID_KEY] = uid
            record = client.update(record)
        return record

    def _annotate_cluster(self, cluster: dict, uid: str):
        name = cluster["metadata"]["name"]
        self.cluster_client.update(set_annotation(cluster, UID_ANNOTATION_KEY, uid))
        # later passes read the master from the cache
        if not self.informer.wait_for_cluster(
                name, lambda c: c is not None and annotations(c).get(UID_ANNOTATION_KEY) == uid,
                self.update_timeout):
            logger.warning(f"UID annotation on cluster {name} not observed within {self.update_timeout}s")
