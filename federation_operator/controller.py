"""
Federation Controller — reconciliation engine for one federated resource kind.

Architecture:
  Federated object watch ─┐
  Cluster object watches ─┼─→ DelayingQueue (dedup by key) ─→ worker pool ─→ reconcile(key)
  Cluster churn ──────────┘

  reconcile(key):
    1. Wait for informers to sync (else requeue after clusterAvailableDelay)
    2. Federated object absent → Dropped
    3. Deletion requested → finalizer protocol:
         orphan finalizer present → drop both finalizers, leave cluster objects
         else delete from every ready cluster, confirm absence, drop cascade finalizer
    4. Ensure both finalizers before any cluster object exists
    5. Pin placement, converge UIDs, aggregate status into the federated object
    6. Create missing / update drifted cluster objects (fan-out, bounded wait)
    7. Requeue after ingressReviewDelay for a double-check pass

  Failure handling:
    - Transient errors → exponential backoff per key
    - Benign races (not found) and bounded-wait expiry → smallDelay
    - A worker never dies on a single key

  Single flight: the queue hands a key to one worker at a time; events that
  arrive meanwhile coalesce into one follow-up pass.
"""

import logging
import threading
from enum import Enum
from typing import Optional

from kubernetes.client import ApiException

from .clients import CLUSTERS, CONFIGMAPS, ClientFactory, ClusterClient
from .config import Settings, settings as default_settings
from .errors import UpdateTimeoutError, is_not_found
from .events import publish_event
from .finalizers import FinalizerManager
from .informer import FederatedInformer, Informer
from .metrics import QUEUE_DEPTH, READY_CLUSTERS, record_reconcile
from .objects import (
    FINALIZER_DELETE_FROM_UNDERLYING_CLUSTERS,
    FINALIZER_ORPHAN,
    UID_ANNOTATION_KEY,
    annotations,
    is_deletion_requested,
    object_key,
    set_annotation,
)
from .policy import IngressPolicy, ResourcePolicy
from .store import ObjectStore
from .uid import UidCoordinator, is_uid_configmap
from .updater import CREATE, DELETE, UPDATE, FederatedUpdater, Operation
from .workqueue import Backoff, DelayingQueue, ShutDown

logger = logging.getLogger("federation-controller")


class Outcome(str, Enum):
    APPLIED = "applied"
    REQUEUED = "requeued"
    DROPPED = "dropped"
    FAILED = "failed"


class FederationController:
    """Keep one federated resource kind converged across member clusters."""

    def __init__(self, federation: ClusterClient, client_factory: ClientFactory,
                 policy: ResourcePolicy, settings: Settings = default_settings):
        self.policy = policy
        self.kind = policy.kind
        self.settings = settings

        self.federation_client = federation.resource(self.kind)
        self.cluster_client = federation.resource(CLUSTERS)

        self.queue = DelayingQueue(self.kind)
        self.backoff = Backoff(settings.BACKOFF_INITIAL, settings.BACKOFF_MAX)

        # Federation-level cache of the federated objects
        self.federated_store = ObjectStore()
        self.federated_informer = Informer(
            f"federated-{self.kind}", self.federation_client, self.federated_store,
            on_add=self._federated_object_changed,
            on_update=self._federated_object_changed,
            on_delete=self._federated_object_changed,
            resync_period=settings.INFORMER_RESYNC_PERIOD,
        )

        # Per-cluster caches of the cluster objects
        self.cluster_informer = FederatedInformer(
            self.kind, self.kind, self.cluster_client, client_factory, settings,
            on_change=self._cluster_object_changed,
            on_cluster_available=self._cluster_available,
            on_cluster_unavailable=self._cluster_unavailable,
        )

        self.finalizers = FinalizerManager(self.federation_client)
        self.updater = FederatedUpdater(self.kind, self.cluster_informer.get_cluster_client)

        # Cluster-scoped UID records, reconciled per cluster name
        self.configmap_queue: Optional[DelayingQueue] = None
        self.configmap_informer: Optional[FederatedInformer] = None
        self.uid_coordinator: Optional[UidCoordinator] = None
        if policy.coordinate_uid:
            self.configmap_queue = DelayingQueue(CONFIGMAPS)
            self.configmap_informer = FederatedInformer(
                CONFIGMAPS, CONFIGMAPS, self.cluster_client, client_factory, settings,
                on_change=lambda cluster_name, obj: self.configmap_queue.add(cluster_name),
                on_cluster_available=lambda cluster: self.configmap_queue.add_after(
                    cluster["metadata"]["name"], settings.CLUSTER_AVAILABLE_DELAY),
                object_filter=is_uid_configmap,
            )
            self.uid_coordinator = UidCoordinator(
                self.configmap_informer, self.cluster_client, update_timeout=settings.UPDATE_TIMEOUT)

        self._threads: list[threading.Thread] = []

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Start informers and worker threads; returns immediately."""
        self.federated_informer.start()
        self.cluster_informer.start()
        if self.configmap_informer is not None:
            self.configmap_informer.start()
            self._spawn(f"{CONFIGMAPS}-worker", self._configmap_worker)
        for i in range(self.settings.MAX_WORKERS):
            self._spawn(f"{self.kind}-worker-{i}", self._worker)
        logger.info(f"Federation controller for {self.kind} started "
                    f"(workers={self.settings.MAX_WORKERS}, uid={self.uid_coordinator is not None})")

    def stop(self):
        """Halt workers and tear down every watch. In-flight API calls finish on their own."""
        logger.info(f"Stopping federation controller for {self.kind}")
        self.queue.shut_down()
        if self.configmap_queue is not None:
            self.configmap_queue.shut_down()
        self.federated_informer.stop()
        self.cluster_informer.stop()
        if self.configmap_informer is not None:
            self.configmap_informer.stop()
        self.updater.shutdown()

    def join(self, timeout: Optional[float] = None):
        for thread in self._threads:
            thread.join(timeout)

    def _spawn(self, name: str, target):
        thread = threading.Thread(target=target, name=name, daemon=True)
        thread.start()
        self._threads.append(thread)

    # ------------------------------------------------------------------
    # event handlers → queue
    # ------------------------------------------------------------------

    def deliver(self, key: str, delay: float = 0, failed: bool = False):
        """Enqueue key, after delay or, when failed, after the key's backoff."""
        if failed:
            delay = self.backoff.next(key)
        self.queue.add_after(key, delay)

    def deliver_all(self, delay: float = 0):
        for key in self.federated_store.list_keys():
            self.deliver(key, delay)

    def _federated_object_changed(self, obj: dict):
        self.deliver(object_key(obj))

    def _cluster_object_changed(self, cluster_name: str, obj: dict):
        key = object_key(obj)
        if self.federated_store.get_by_key(key) is not None:
            self.deliver(key, self.settings.SMALL_DELAY)

    def _cluster_available(self, cluster: dict):
        READY_CLUSTERS.labels(kind=self.kind).set(len(self.cluster_informer.get_ready_clusters()))
        self.deliver_all(self.settings.CLUSTER_AVAILABLE_DELAY)

    def _cluster_unavailable(self, cluster: dict):
        READY_CLUSTERS.labels(kind=self.kind).set(len(self.cluster_informer.get_ready_clusters()))
        self.deliver_all()

    # ------------------------------------------------------------------
    # workers
    # ------------------------------------------------------------------

    def _worker(self):
        while True:
            try:
                key = self.queue.get()
            except ShutDown:
                return
            try:
                QUEUE_DEPTH.labels(queue=self.kind).set(len(self.queue))
                self.process(key)
            finally:
                self.queue.done(key)

    def process(self, key: str) -> Outcome:
        """Reconcile one key and schedule its next pass. Never raises."""
        try:
            outcome = self.reconcile(key)
            if outcome is not Outcome.REQUEUED:
                self.backoff.reset(key)
        except UpdateTimeoutError as e:
            logger.warning(f"Reconcile of {self.kind} {key} timed out: {e}")
            self.deliver(key, self.settings.SMALL_DELAY)
            outcome = Outcome.REQUEUED
        except ApiException as e:
            if is_not_found(e):
                logger.info(f"{self.kind} {key} vanished during reconcile — retrying shortly")
                self.deliver(key, self.settings.SMALL_DELAY)
                outcome = Outcome.REQUEUED
            else:
                logger.warning(f"Reconcile of {self.kind} {key} failed (status={e.status}): {e.reason}")
                self.deliver(key, failed=True)
                outcome = Outcome.FAILED
        except Exception as e:
            logger.error(f"Reconcile of {self.kind} {key} failed: {e}", exc_info=True)
            self.deliver(key, failed=True)
            outcome = Outcome.FAILED
        record_reconcile(self.kind, outcome.value)
        return outcome

    def _configmap_worker(self):
        while True:
            try:
                cluster_name = self.configmap_queue.get()
            except ShutDown:
                return
            try:
                self.uid_coordinator.reconcile_cluster(cluster_name)
                self.backoff.reset(f"cluster:{cluster_name}")
                if self.configmap_informer.get_ready_cluster(cluster_name) is None:
                    logger.info(f"Cluster {cluster_name} no longer ready — UID reviews stop until it returns")
                else:
                    self.configmap_queue.add_after(cluster_name, self.settings.CONFIGMAP_REVIEW_DELAY)
            except Exception as e:
                logger.warning(f"UID reconcile for cluster {cluster_name} failed: {e}")
                self.configmap_queue.add_after(cluster_name, self.backoff.next(f"cluster:{cluster_name}"))
            finally:
                self.configmap_queue.done(cluster_name)

    # ------------------------------------------------------------------
    # reconcile
    # ------------------------------------------------------------------

    def is_synced(self) -> bool:
        if not self.federated_informer.has_synced or not self.cluster_informer.clusters_synced():
            return False
        return self.configmap_informer is None or self.configmap_informer.clusters_synced()

    def reconcile(self, key: str) -> Outcome:
        if not self.is_synced():
            logger.debug(f"Informers not synced — delaying {self.kind} {key}")
            self.deliver(key, self.settings.CLUSTER_AVAILABLE_DELAY)
            return Outcome.REQUEUED

        federated = self.federated_store.get_by_key(key)
        if federated is None:
            logger.debug(f"{self.kind} {key} no longer exists — dropping")
            return Outcome.DROPPED

        if is_deletion_requested(federated):
            return self._reconcile_deletion(key, federated)

        # Both finalizers go on before any cluster object is created.
        federated = self._ensure_finalizer(federated, FINALIZER_DELETE_FROM_UNDERLYING_CLUSTERS)
        federated = self._ensure_finalizer(federated, FINALIZER_ORPHAN)

        clusters = self.cluster_informer.get_ready_clusters()
        cluster_names = [c["metadata"]["name"] for c in clusters]

        pinned = self.policy.pin(federated, cluster_names)
        if pinned is not None:
            federated = self._write_federated(pinned)

        if self.uid_coordinator is not None:
            uid = self.uid_coordinator.reconcile_object(federated)
            if uid and annotations(federated).get(UID_ANNOTATION_KEY) != uid:
                logger.info(f"Recording uid {uid} on {self.kind} {key}")
                federated = self._write_federated(set_annotation(federated, UID_ANNOTATION_KEY, uid))

        store = self.cluster_informer.get_target_store()
        cluster_objects = {}
        for name in cluster_names:
            obj = store.get_by_key(name, key)
            if obj is not None:
                cluster_objects[name] = obj

        if self.policy.status_aggregator is not None:
            updated = self.policy.status_aggregator.aggregate(federated, cluster_objects)
            if updated is not None:
                federated = self._write_federated(updated)
                publish_event(key, "STATUS_UPDATED", "Federated status refreshed from member cluster")

        operations = []
        waiting = []
        for name in cluster_names:
            existing = cluster_objects.get(name)
            desired = self.policy.desired_object(federated, existing)
            if existing is None:
                if self.policy.may_create_in(federated, name):
                    operations.append(Operation(CREATE, name, key, desired))
                else:
                    waiting.append(name)
            elif self.policy.needs_update(desired, existing):
                operations.append(Operation(UPDATE, name, key, desired))

        if waiting:
            logger.info(f"Not creating {self.kind} {key} in {waiting} until the first cluster reports a static IP")

        if operations:
            self._apply(key, operations)
            created = [op.cluster_name for op in operations if op.type == CREATE]
            if not self._wait_for_cluster_objects(key, created, present=True):
                self.deliver(key, self.settings.SMALL_DELAY)
                return Outcome.REQUEUED

        self.deliver(key, self.settings.INGRESS_REVIEW_DELAY)
        return Outcome.APPLIED

    def _reconcile_deletion(self, key: str, federated: dict) -> Outcome:
        if self.finalizers.has_finalizer(federated, FINALIZER_ORPHAN):
            logger.info(f"Orphaning cluster objects of {self.kind} {key}")
            self.finalizers.remove_finalizers(
                federated, [FINALIZER_ORPHAN, FINALIZER_DELETE_FROM_UNDERLYING_CLUSTERS])
            publish_event(key, "ORPHANED", "Federated object removed, cluster objects kept")
            return Outcome.APPLIED

        if not self.finalizers.has_finalizer(federated, FINALIZER_DELETE_FROM_UNDERLYING_CLUSTERS):
            return Outcome.DROPPED

        store = self.cluster_informer.get_target_store()
        holding = [c["metadata"]["name"] for c in self.cluster_informer.get_ready_clusters()
                   if store.get_by_key(c["metadata"]["name"], key) is not None]
        if holding:
            logger.info(f"Deleting {self.kind} {key} from clusters {holding}")
            self._apply(key, [Operation(DELETE, name, key) for name in holding])
            if not self._wait_for_cluster_objects(key, holding, present=False):
                self.deliver(key, self.settings.SMALL_DELAY)
                return Outcome.REQUEUED

        # unready clusters have no cache to prove the object is gone there
        unready = [c["metadata"]["name"] for c in self.cluster_informer.get_unready_clusters()]
        if unready:
            logger.info(f"Keeping {self.kind} {key} until clusters {unready} are reachable to delete from")
            self.deliver(key, failed=True)
            return Outcome.REQUEUED

        self.finalizers.remove_finalizer(federated, FINALIZER_DELETE_FROM_UNDERLYING_CLUSTERS)
        publish_event(key, "DELETED", "Removed from all member clusters")
        logger.info(f"{self.kind} {key} removed from all member clusters")
        return Outcome.APPLIED

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _apply(self, key: str, operations: list[Operation]):
        errors = self.updater.update(operations, self.settings.UPDATE_TIMEOUT)
        for op in operations:
            if op.cluster_name not in errors:
                publish_event(key, op.type.upper(), f"{op.type} succeeded", cluster=op.cluster_name)
        if errors:
            for cluster_name, exc in errors.items():
                logger.warning(f"{self.kind} {key} in cluster {cluster_name}: {exc}")
            # every cluster was attempted; one failure is enough to retry the key
            raise next(iter(errors.values()))

    def _wait_for_cluster_objects(self, key: str, cluster_names: list[str], present: bool) -> bool:
        store = self.cluster_informer.get_target_store()
        for name in cluster_names:
            if not store.wait_for(name, key, lambda obj: (obj is not None) == present,
                                  self.settings.UPDATE_TIMEOUT):
                logger.info(f"{self.kind} {key} not yet {'visible' if present else 'gone'} in cluster {name}")
                return False
        return True

    def _ensure_finalizer(self, federated: dict, token: str) -> dict:
        updated = self.finalizers.ensure_finalizer(federated, token)
        if updated is not federated:
            self._wait_for_federated(federated)
        return updated

    def _write_federated(self, obj: dict) -> dict:
        updated = self.federation_client.update(obj)
        self._wait_for_federated(obj)
        return updated

    def _wait_for_federated(self, previous: dict):
        """Wait until the federated cache has moved past the version we wrote over."""
        key = object_key(previous)
        version = previous.get("metadata", {}).get("resourceVersion")
        self.federated_store.wait_for(
            key,
            lambda obj: obj is None or obj.get("metadata", {}).get("resourceVersion") != version,
            self.settings.UPDATE_TIMEOUT,
        )


def new_ingress_controller(federation: ClusterClient, client_factory: ClientFactory,
                           settings: Settings = default_settings) -> FederationController:
    """The federated ingress controller: UID coordination plus load-balancer status relay."""
    return FederationController(federation, client_factory, IngressPolicy(), settings)
