"""
FederatedUpdater — fan out per-cluster writes for one object key.

Operations run concurrently on a thread pool, one per cluster, and are
collected with a bounded timeout. Each operation is idempotent: deleting an
absent object and creating an object that already exists both count as
success. Results for every cluster are gathered before the caller decides on
finalizers or status.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Optional

from .clients import ResourceClient
from .errors import UpdateTimeoutError, is_conflict, is_not_found
from .metrics import record_operation
from .objects import object_key, split_key

logger = logging.getLogger("federated-updater")

CREATE = "create"
UPDATE = "update"
DELETE = "delete"


@dataclass
class Operation:
    type: str
    cluster_name: str
    key: str
    obj: Optional[dict] = None


class FederatedUpdater:

    def __init__(self, kind: str, client_for_cluster: Callable[[str], Optional[ResourceClient]],
                 max_workers: int = 8):
        self.kind = kind
        self._client_for_cluster = client_for_cluster
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=f"{kind}-updater")

    def update(self, operations: list[Operation], timeout: float) -> dict[str, Exception]:
        """
        Run all operations and return cluster name -> error for the ones that failed.
        Raises UpdateTimeoutError when they do not all finish within timeout;
        stragglers keep running and complete or fail on their own.
        """
        if not operations:
            return {}
        futures = {self._executor.submit(self._apply, op): op for op in operations}
        finished, pending = wait(futures, timeout=timeout)
        if pending:
            clusters = sorted(futures[f].cluster_name for f in pending)
            raise UpdateTimeoutError(f"{self.kind} operations still running after {timeout}s in {clusters}")

        errors = {}
        for future in finished:
            op = futures[future]
            exc = future.exception()
            if exc is not None:
                errors[op.cluster_name] = exc
        return errors

    def shutdown(self):
        self._executor.shutdown(wait=False)

    def _apply(self, op: Operation):
        client = self._client_for_cluster(op.cluster_name)
        if client is None:
            record_operation(self.kind, op.type, "unavailable")
            raise RuntimeError(f"cluster {op.cluster_name} is not available")
        try:
            if op.type == CREATE:
                logger.info(f"Creating {self.kind} {op.key} in cluster {op.cluster_name}")
                client.create(op.obj)
            elif op.type == UPDATE:
                logger.info(f"Updating {self.kind} {op.key} in cluster {op.cluster_name}")
                client.update(op.obj)
            elif op.type == DELETE:
                logger.info(f"Deleting {self.kind} {op.key} from cluster {op.cluster_name}")
                namespace, name = split_key(op.key)
                client.delete(namespace, name)
            else:
                raise ValueError(f"unknown operation {op.type}")
        except Exception as e:
            if op.type == DELETE and is_not_found(e):
                logger.info(f"{self.kind} {op.key} already gone from cluster {op.cluster_name}")
            elif op.type == CREATE and is_conflict(e):
                logger.info(f"{self.kind} {object_key(op.obj)} already exists in cluster {op.cluster_name}")
            else:
                record_operation(self.kind, op.type, "error")
                raise
        record_operation(self.kind, op.type, "success")
