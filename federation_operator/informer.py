"""
Informers: list+watch caches for one API server, and the federated informer
that runs one of them per ready member cluster.

FederatedInformer watches the Cluster records on the federation API. When a
cluster turns ready it asks the injected client factory for a client and
starts a per-cluster informer; when the cluster goes away or turns not-ready
the informer is stopped and its cached objects are evicted. Client factory
failures leave the cluster unavailable and are retried with backoff.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from kubernetes.client import ApiException

from .clients import ADDED, DELETED, MODIFIED, ClientFactory, ClusterClient, ResourceClient
from .config import Settings
from .objects import is_cluster_ready, is_well_formed, object_key
from .store import FederatedStore, ObjectStore
from .workqueue import Backoff, DelayingQueue, ShutDown

logger = logging.getLogger("federated-informer")

ObjectHandler = Callable[[dict], None]


class Informer:
    """
    Keep an ObjectStore in sync with one resource on one API server.

    Runs list → watch in a daemon thread, relisting every resync_period (a
    relist redelivers every object as an update, which catches missed events)
    and after any watch failure. Handlers run on the informer thread.
    """

    def __init__(self, name: str, client: ResourceClient, store: ObjectStore,
                 on_add: Optional[ObjectHandler] = None,
                 on_update: Optional[ObjectHandler] = None,
                 on_delete: Optional[ObjectHandler] = None,
                 object_filter: Optional[Callable[[dict], bool]] = None,
                 resync_period: float = 300.0):
        self.name = name
        self.client = client
        self.store = store
        self.on_add = on_add
        self.on_update = on_update
        self.on_delete = on_delete
        self.object_filter = object_filter
        self.resync_period = resync_period

        self._resource_version = ""
        self._has_synced = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def has_synced(self) -> bool:
        return self._has_synced

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name=f"informer-{self.name}", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def _run(self):
        backoff = 1.0
        while not self._stop_event.is_set():
            try:
                self._list()
                backoff = 1.0
                self._watch_until_resync()
            except ApiException as e:
                if e.status == 410:
                    logger.info(f"[{self.name}] resource version expired — relisting")
                    continue
                logger.warning(f"[{self.name}] list/watch failed: {e}")
                self._stop_event.wait(backoff)
                backoff = min(backoff * 2, 30.0)
            except Exception as e:
                logger.error(f"[{self.name}] unexpected informer error: {e}", exc_info=True)
                self._stop_event.wait(backoff)
                backoff = min(backoff * 2, 30.0)

    def _list(self):
        items, resource_version = self.client.list()
        accepted = [obj for obj in items if self._accept(obj)]
        previous = {object_key(obj): obj for obj in self.store.list()}
        self.store.replace(accepted)
        self._resource_version = resource_version
        self._has_synced = True

        for obj in accepted:
            key = object_key(obj)
            if key in previous:
                previous.pop(key)
                self._dispatch(self.on_update, obj)
            else:
                self._dispatch(self.on_add, obj)
        for obj in previous.values():
            self._dispatch(self.on_delete, obj)

    def _watch_until_resync(self):
        resync_at = time.monotonic() + self.resync_period
        while not self._stop_event.is_set() and time.monotonic() < resync_at:
            for event_type, obj in self.client.watch(self._resource_version, self._stop_event):
                if self._stop_event.is_set():
                    return
                self._handle_event(event_type, obj)
                if time.monotonic() >= resync_at:
                    break

    def _handle_event(self, event_type: str, obj):
        if not is_well_formed(obj):
            logger.warning(f"[{self.name}] dropping malformed {event_type} event: {obj!r:.200}")
            return
        rv = obj["metadata"].get("resourceVersion")
        if rv:
            self._resource_version = rv
        if not self._accept(obj):
            return

        key = object_key(obj)
        if event_type == DELETED:
            self.store.delete(key)
            self._dispatch(self.on_delete, obj)
        elif event_type in (ADDED, MODIFIED):
            existed = self.store.get_by_key(key) is not None
            self.store.upsert(obj)
            self._dispatch(self.on_update if existed else self.on_add, obj)
        else:
            logger.warning(f"[{self.name}] unknown watch event type {event_type!r} for {key}")

    def _accept(self, obj) -> bool:
        if not is_well_formed(obj):
            logger.warning(f"[{self.name}] dropping malformed object: {obj!r:.200}")
            return False
        return self.object_filter is None or self.object_filter(obj)

    def _dispatch(self, handler: Optional[ObjectHandler], obj: dict):
        if handler is None:
            return
        try:
            handler(obj)
        except Exception as e:
            logger.error(f"[{self.name}] event handler failed for {object_key(obj)}: {e}", exc_info=True)


@dataclass
class _ClusterSession:
    cluster: dict
    client: ClusterClient
    informer: Informer


class FederatedInformer:
    """One informer per ready member cluster, all writing into a FederatedStore."""

    def __init__(self, name: str, kind: str, cluster_client: ResourceClient,
                 client_factory: ClientFactory, settings: Settings,
                 on_change: Callable[[str, dict], None],
                 on_cluster_available: Optional[Callable[[dict], None]] = None,
                 on_cluster_unavailable: Optional[Callable[[dict], None]] = None,
                 object_filter: Optional[Callable[[dict], bool]] = None):
        self.name = name
        self.kind = kind
        self.settings = settings
        self._client_factory = client_factory
        self._on_change = on_change
        self._on_cluster_available = on_cluster_available
        self._on_cluster_unavailable = on_cluster_unavailable
        self._object_filter = object_filter

        self._target_store = FederatedStore()
        self._sessions: dict[str, _ClusterSession] = {}
        self._lock = threading.Lock()
        self._lifecycle = DelayingQueue(f"{name}-clusters")
        self._factory_backoff = Backoff(settings.SMALL_DELAY, settings.BACKOFF_MAX)
        self._lifecycle_thread: Optional[threading.Thread] = None

        self._cluster_informer = Informer(
            f"{name}-clusters", cluster_client, ObjectStore(),
            on_add=self._cluster_changed,
            on_update=self._cluster_changed,
            on_delete=self._cluster_changed,
            resync_period=settings.INFORMER_RESYNC_PERIOD,
        )

    # ------------------------------------------------------------------
    # read side
    # ------------------------------------------------------------------

    def get_target_store(self) -> FederatedStore:
        return self._target_store

    def get_ready_clusters(self) -> list[dict]:
        """Ready clusters that have a running watch session, sorted by name."""
        with self._lock:
            names = sorted(self._sessions)
        clusters = []
        for name in names:
            cluster = self.get_ready_cluster(name)
            if cluster is not None:
                clusters.append(cluster)
        return clusters

    def get_unready_clusters(self) -> list[dict]:
        """Known Cluster records without a ready watch session, sorted by name."""
        ready = {c["metadata"]["name"] for c in self.get_ready_clusters()}
        clusters = [c for c in self._cluster_informer.store.list() if c["metadata"]["name"] not in ready]
        return sorted(clusters, key=lambda c: c["metadata"]["name"])

    def get_ready_cluster(self, name: str) -> Optional[dict]:
        with self._lock:
            if name not in self._sessions:
                return None
        cluster = self._cluster_informer.store.get_by_key(name)
        if cluster is None or not is_cluster_ready(cluster):
            return None
        return cluster

    def get_cluster_client(self, name: str) -> Optional[ResourceClient]:
        """Resource client for this informer's kind in a ready cluster."""
        with self._lock:
            session = self._sessions.get(name)
        return session.client.resource(self.kind) if session is not None else None

    def clusters_synced(self) -> bool:
        """True once the cluster list and every ready cluster's informer have listed."""
        if not self._cluster_informer.has_synced:
            return False
        with self._lock:
            sessions = list(self._sessions.values())
        return all(s.informer.has_synced for s in sessions)

    def wait_for_cluster(self, name: str, predicate: Callable[[Optional[dict]], bool], timeout: float) -> bool:
        """Wait until the cached Cluster record satisfies predicate."""
        return self._cluster_informer.store.wait_for(name, predicate, timeout)

    def cluster_synced(self, name: str) -> bool:
        with self._lock:
            session = self._sessions.get(name)
        return session is not None and session.informer.has_synced

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def start(self):
        self._lifecycle_thread = threading.Thread(
            target=self._lifecycle_worker, name=f"{self.name}-cluster-lifecycle", daemon=True)
        self._lifecycle_thread.start()
        self._cluster_informer.start()

    def stop(self):
        self._cluster_informer.stop()
        self._lifecycle.shut_down()
        with self._lock:
            sessions = list(self._sessions.items())
            self._sessions.clear()
        for name, session in sessions:
            session.informer.stop()
            self._target_store.evict_cluster(name)

    def _cluster_changed(self, cluster: dict):
        self._lifecycle.add(cluster["metadata"]["name"])

    def _lifecycle_worker(self):
        while True:
            try:
                name = self._lifecycle.get()
            except ShutDown:
                return
            try:
                self._sync_cluster(name)
            except Exception as e:
                logger.error(f"[{self.name}] cluster {name} sync failed: {e}", exc_info=True)
                self._lifecycle.add_after(name, self._factory_backoff.next(name))
            finally:
                self._lifecycle.done(name)

    def _sync_cluster(self, name: str):
        cluster = self._cluster_informer.store.get_by_key(name)
        ready = cluster is not None and is_cluster_ready(cluster)
        with self._lock:
            session = self._sessions.get(name)

        if ready and session is None:
            self._open_session(name, cluster)
        elif not ready and session is not None:
            self._close_session(name, session, cluster)
        elif ready:
            session.cluster = cluster

    def _open_session(self, name: str, cluster: dict):
        try:
            client = self._client_factory(cluster)
        except Exception as e:
            delay = self._factory_backoff.next(name)
            logger.warning(f"[{self.name}] no client for cluster {name} (retry in {delay:.1f}s): {e}")
            self._lifecycle.add_after(name, delay)
            return
        self._factory_backoff.reset(name)

        store = self._target_store.add_cluster(name)
        informer = Informer(
            f"{self.name}-{name}", client.resource(self.kind), store,
            on_add=lambda obj: self._on_change(name, obj),
            on_update=lambda obj: self._on_change(name, obj),
            on_delete=lambda obj: self._on_change(name, obj),
            object_filter=self._object_filter,
            resync_period=self.settings.INFORMER_RESYNC_PERIOD,
        )
        with self._lock:
            self._sessions[name] = _ClusterSession(cluster=cluster, client=client, informer=informer)
        informer.start()
        logger.info(f"[{self.name}] cluster {name} available — watching {self.kind}")
        if self._on_cluster_available is not None:
            self._on_cluster_available(cluster)

    def _close_session(self, name: str, session: _ClusterSession, cluster: Optional[dict]):
        session.informer.stop()
        with self._lock:
            self._sessions.pop(name, None)
        self._target_store.evict_cluster(name)
        logger.info(f"[{self.name}] cluster {name} unavailable — watch stopped, cache evicted")
        if self._on_cluster_unavailable is not None:
            self._on_cluster_unavailable(cluster or session.cluster)
