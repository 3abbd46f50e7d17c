"""
Local caches fed by watch callbacks.

ObjectStore caches one resource kind from one API server. FederatedStore
keys ObjectStores by cluster name. Both are read-only for the reconcile
workers; only informer callbacks write. Lookups never touch the network.

Writers notify a condition variable so callers can wait for cache
convergence with a bounded timeout instead of polling.
"""

import copy
import threading
import time
from typing import Callable, List, Optional

from .objects import object_key


class ObjectStore:
    """Thread-safe cache of objects keyed by "namespace/name"."""

    def __init__(self):
        self._items: dict[str, dict] = {}
        self._cond = threading.Condition()

    def get_by_key(self, key: str) -> Optional[dict]:
        with self._cond:
            obj = self._items.get(key)
        return copy.deepcopy(obj) if obj is not None else None

    # shadows the builtin for the rest of the class body
    def list(self) -> list[dict]:
        with self._cond:
            items = list(self._items.values())
        return [copy.deepcopy(obj) for obj in items]

    def list_keys(self) -> List[str]:
        with self._cond:
            return sorted(self._items)

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    # --- writer side (informer callbacks) ---

    def upsert(self, obj: dict):
        with self._cond:
            self._items[object_key(obj)] = obj
            self._cond.notify_all()

    def delete(self, key: str):
        with self._cond:
            self._items.pop(key, None)
            self._cond.notify_all()

    def replace(self, objs: List[dict]):
        """Swap in the result of a full list. Objects built outside the lock."""
        items = {object_key(obj): obj for obj in objs}
        with self._cond:
            self._items = items
            self._cond.notify_all()

    def clear(self):
        self.replace([])

    def wait_for(self, key: str, predicate: Callable[[Optional[dict]], bool], timeout: float) -> bool:
        """
        Block until predicate(cached object or None) holds or timeout expires.
        Returns whether the predicate was satisfied.
        """
        deadline = time.monotonic() + timeout
        with self._cond:
            while True:
                if predicate(self._items.get(key)):
                    return True
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(remaining)


class FederatedStore:
    """Per-cluster caches of one resource kind, keyed by cluster then object key."""

    def __init__(self):
        self._stores: dict[str, ObjectStore] = {}
        self._lock = threading.Lock()

    def get_by_key(self, cluster_name: str, key: str) -> Optional[dict]:
        """Cached object for key in cluster, or None. Never blocks on the network."""
        store = self.cluster_store(cluster_name)
        if store is None:
            return None
        return store.get_by_key(key)

    def list_from_cluster(self, cluster_name: str) -> list[dict]:
        store = self.cluster_store(cluster_name)
        return store.list() if store is not None else []

    def list_from_all_clusters(self) -> dict[str, list[dict]]:
        with self._lock:
            stores = dict(self._stores)
        return {name: store.list() for name, store in stores.items()}

    def get_from_all_clusters(self, key: str) -> dict[str, dict]:
        """Cluster name -> cached object, for every cluster holding key."""
        with self._lock:
            stores = dict(self._stores)
        found = {}
        for name, store in stores.items():
            obj = store.get_by_key(key)
            if obj is not None:
                found[name] = obj
        return found

    def clusters(self) -> list[str]:
        with self._lock:
            return sorted(self._stores)

    def cluster_store(self, cluster_name: str) -> Optional[ObjectStore]:
        with self._lock:
            return self._stores.get(cluster_name)

    def wait_for(self, cluster_name: str, key: str,
                 predicate: Callable[[Optional[dict]], bool], timeout: float) -> bool:
        store = self.cluster_store(cluster_name)
        if store is None:
            return predicate(None)
        return store.wait_for(key, predicate, timeout)

    # --- writer side ---

    def add_cluster(self, cluster_name: str) -> ObjectStore:
        with self._lock:
            store = self._stores.get(cluster_name)
            if store is None:
                store = self._stores[cluster_name] = ObjectStore()
            return store

    def evict_cluster(self, cluster_name: str):
        with self._lock:
            store = self._stores.pop(cluster_name, None)
        if store is not None:
            # wake any waiter on the evicted cluster
            store.clear()
