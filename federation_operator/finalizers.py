"""
FinalizerManager — add/remove finalizer tokens on federated objects.

Tokens are opaque strings compared for set membership. Every operation is
idempotent and issues at most one API write, and only when the finalizer set
actually changes. Callers guarantee single-flight per object key.
"""

import copy
import logging

from .clients import ResourceClient
from .objects import finalizers, object_key

logger = logging.getLogger("finalizers")


class FinalizerManager:

    def __init__(self, client: ResourceClient):
        self.client = client

    @staticmethod
    def has_finalizer(obj: dict, token: str) -> bool:
        return token in finalizers(obj)

    def ensure_finalizer(self, obj: dict, token: str) -> dict:
        """Add token if absent. Returns the (possibly updated) object."""
        if self.has_finalizer(obj, token):
            return obj
        updated = copy.deepcopy(obj)
        updated["metadata"]["finalizers"] = finalizers(obj) + [token]
        logger.info(f"Adding finalizer {token} to {object_key(obj)}")
        return self.client.update(updated)

    def remove_finalizer(self, obj: dict, token: str) -> dict:
        """Remove token if present. Returns the (possibly updated) object."""
        return self.remove_finalizers(obj, [token])

    def remove_finalizers(self, obj: dict, tokens: list[str]) -> dict:
        remaining = [f for f in finalizers(obj) if f not in tokens]
        if len(remaining) == len(finalizers(obj)):
            return obj
        updated = copy.deepcopy(obj)
        updated["metadata"]["finalizers"] = remaining
        logger.info(f"Removing finalizers {tokens} from {object_key(obj)}")
        return self.client.update(updated)
