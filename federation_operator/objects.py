"""
Object helpers for Kubernetes-shaped dicts.

Federated and cluster objects are handled as plain dicts with ``metadata``,
``spec`` and ``status`` sections, the same shape the Kubernetes API returns.
Spec comparisons go through an explicit comparable projection so that status
and system-managed metadata never trigger an update.
"""

import copy
from typing import Optional

# ---------------------------------------------------------------------------
# Well-known annotation keys and finalizer tokens
# ---------------------------------------------------------------------------

FIRST_CLUSTER_ANNOTATION = "ingress.federation.kubernetes.io/first-cluster"
UID_ANNOTATION_KEY = "kubernetes.io/ingress.uid"
STATIC_IP_NAME_KEY_WRITABLE = "kubernetes.io/ingress.global-static-ip-name"
STATIC_IP_NAME_KEY_READONLY = "ingress.kubernetes.io/static-ip"

FINALIZER_ORPHAN = "orphan"
FINALIZER_DELETE_FROM_UNDERLYING_CLUSTERS = "federation.kubernetes.io/delete-from-underlying-clusters"

# Annotations written by member-cluster controllers; kept on cluster objects.
CLUSTER_OWNED_ANNOTATIONS = (STATIC_IP_NAME_KEY_READONLY,)


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

def object_key(obj: dict) -> str:
    """Return "namespace/name", or just "name" for cluster-scoped objects."""
    meta = obj.get("metadata", {})
    namespace = meta.get("namespace")
    if namespace:
        return f"{namespace}/{meta['name']}"
    return meta["name"]


def split_key(key: str) -> tuple[str, str]:
    """Split a key into (namespace, name); namespace is "" for cluster-scoped keys."""
    if "/" in key:
        namespace, name = key.split("/", 1)
        return namespace, name
    return "", key


def is_well_formed(obj) -> bool:
    return isinstance(obj, dict) and bool(obj.get("metadata", {}).get("name"))


# ---------------------------------------------------------------------------
# Metadata accessors
# ---------------------------------------------------------------------------

def annotations(obj: dict) -> dict:
    return obj.get("metadata", {}).get("annotations") or {}


def finalizers(obj: dict) -> list:
    return obj.get("metadata", {}).get("finalizers") or []


def is_deletion_requested(obj: dict) -> bool:
    return bool(obj.get("metadata", {}).get("deletionTimestamp"))


def set_annotation(obj: dict, key: str, value: str) -> dict:
    """Return a copy of obj with the annotation set."""
    updated = copy.deepcopy(obj)
    meta = updated.setdefault("metadata", {})
    meta["annotations"] = dict(meta.get("annotations") or {})
    meta["annotations"][key] = value
    return updated


def load_balancer_ingress(obj: Optional[dict]) -> list:
    if not obj:
        return []
    return ((obj.get("status") or {}).get("loadBalancer") or {}).get("ingress") or []


def is_cluster_ready(cluster: dict) -> bool:
    for condition in (cluster.get("status") or {}).get("conditions") or []:
        if condition.get("type") == "Ready":
            return condition.get("status") == "True"
    return False


# ---------------------------------------------------------------------------
# Comparable projection
# ---------------------------------------------------------------------------

def comparable_projection(obj: dict) -> dict:
    """
    The part of an object that the federation owns.

    Excludes status, resourceVersion, uid, timestamps, finalizers and every
    other system-managed field.
    """
    meta = obj.get("metadata", {})
    return {
        "metadata": {
            "name": meta.get("name"),
            "namespace": meta.get("namespace") or "",
            "labels": dict(meta.get("labels") or {}),
            "annotations": dict(meta.get("annotations") or {}),
        },
        "spec": obj.get("spec") or {},
    }


def meta_equivalent(a: dict, b: dict) -> bool:
    return comparable_projection(a)["metadata"] == comparable_projection(b)["metadata"]


def spec_equivalent(a: dict, b: dict) -> bool:
    return comparable_projection(a) == comparable_projection(b)


def desired_cluster_object(federated: dict, existing: Optional[dict] = None) -> dict:
    """
    Build the object a member cluster should hold for a federated object.

    Carries spec and reconciled metadata but never the federated status. When
    the cluster already holds an object, its status subtree and resourceVersion
    are preserved, along with annotations owned by the member cluster, so the
    update does not clobber cluster-local state.
    """
    projection = copy.deepcopy(comparable_projection(federated))
    meta = {k: v for k, v in projection["metadata"].items() if v}
    desired = {"metadata": meta, "spec": projection["spec"]}
    for field in ("apiVersion", "kind"):
        if field in federated:
            desired[field] = federated[field]
    if existing is not None:
        existing_meta = existing.get("metadata", {})
        if existing_meta.get("resourceVersion"):
            meta["resourceVersion"] = existing_meta["resourceVersion"]
        owned = {k: v for k, v in (existing_meta.get("annotations") or {}).items()
                 if k in CLUSTER_OWNED_ANNOTATIONS}
        if owned:
            meta["annotations"] = {**meta.get("annotations", {}), **owned}
        if "status" in existing:
            desired["status"] = copy.deepcopy(existing["status"])
    return desired
