"""
Kubernetes service layer — ResourceClient implementations over the real API.

Design principles:
  - Objects cross this boundary as plain dicts (camelCase, as on the wire)
  - Errors stay kubernetes.client.ApiException; get() maps 404 to None
  - One ApiClient per API server: the federation control plane and each
    member cluster (kubeconfig context named after the cluster)
"""

import logging
import threading
from typing import Callable, Iterator, Optional

from kubernetes import client, config, watch
from kubernetes.client import ApiException

from ..clients import CLUSTERS, CONFIGMAPS, INGRESSES, ClusterClient
from ..config import Settings, settings as default_settings
from ..errors import ClientFactoryError
from ..uid import UID_CONFIGMAP_NAMESPACE

logger = logging.getLogger("kubernetes_service")

_k8s_loaded = False


def _ensure_k8s(settings: Settings):
    """Load the federation kubeconfig exactly once."""
    global _k8s_loaded
    if _k8s_loaded:
        return
    if settings.IN_CLUSTER:
        config.load_incluster_config()
    else:
        config.load_kube_config(config_file=settings.KUBECONFIG or None)
    _k8s_loaded = True


class KubernetesResource:
    """ResourceClient for one kind, built from the generated API functions."""

    def __init__(self, kind: str, api_client: client.ApiClient,
                 list_fn: Callable, read_fn: Callable, create_fn: Callable,
                 replace_fn: Callable, delete_fn: Callable,
                 replace_status_fn: Optional[Callable] = None,
                 namespaced: bool = True, watch_timeout: int = 60, **list_kwargs):
        self.kind = kind
        self.api_client = api_client
        self._list_fn = list_fn
        self._read_fn = read_fn
        self._create_fn = create_fn
        self._replace_fn = replace_fn
        self._delete_fn = delete_fn
        self._replace_status_fn = replace_status_fn
        self._namespaced = namespaced
        self._watch_timeout = watch_timeout
        self._list_kwargs = list_kwargs

    def _to_dict(self, obj) -> dict:
        return obj if isinstance(obj, dict) else self.api_client.sanitize_for_serialization(obj)

    def _target(self, namespace: str, name: str) -> dict:
        return {"name": name, "namespace": namespace} if self._namespaced else {"name": name}

    def list(self) -> tuple[list[dict], str]:
        resp = self._to_dict(self._list_fn(**self._list_kwargs))
        items = resp.get("items", [])
        for item in items:
            item.setdefault("kind", self.kind)
        return items, resp.get("metadata", {}).get("resourceVersion", "")

    def watch(self, resource_version: str, stop: threading.Event) -> Iterator[tuple[str, dict]]:
        w = watch.Watch()
        try:
            for event in w.stream(self._list_fn, resource_version=resource_version,
                                  timeout_seconds=self._watch_timeout, **self._list_kwargs):
                if stop.is_set():
                    return
                if event["type"] == "ERROR":
                    raw = event.get("raw_object") or {}
                    raise ApiException(status=raw.get("code", 500), reason=raw.get("message", "watch error"))
                yield event["type"], event["raw_object"]
        finally:
            w.stop()

    def create(self, obj: dict) -> dict:
        namespace = obj["metadata"].get("namespace", "")
        kwargs = {"namespace": namespace} if self._namespaced else {}
        return self._to_dict(self._create_fn(body=obj, **kwargs))

    def update(self, obj: dict) -> dict:
        meta = obj["metadata"]
        target = self._target(meta.get("namespace", ""), meta["name"])
        updated = self._to_dict(self._replace_fn(body=obj, **target))
        # status is a subresource; the main replace ignores it
        if self._replace_status_fn is not None and obj.get("status") and obj["status"] != updated.get("status"):
            body = dict(updated, status=obj["status"])
            updated = self._to_dict(self._replace_status_fn(body=body, **target))
        return updated

    def delete(self, namespace: str, name: str) -> None:
        self._delete_fn(**self._target(namespace, name))

    def get(self, namespace: str, name: str) -> Optional[dict]:
        try:
            return self._to_dict(self._read_fn(**self._target(namespace, name)))
        except ApiException as e:
            if e.status == 404:
                return None
            raise


def ingress_resource(api_client: client.ApiClient, watch_timeout: int = 60) -> KubernetesResource:
    api = client.NetworkingV1Api(api_client)
    return KubernetesResource(
        "Ingress", api_client,
        list_fn=api.list_ingress_for_all_namespaces,
        read_fn=api.read_namespaced_ingress,
        create_fn=api.create_namespaced_ingress,
        replace_fn=api.replace_namespaced_ingress,
        delete_fn=api.delete_namespaced_ingress,
        replace_status_fn=api.replace_namespaced_ingress_status,
        watch_timeout=watch_timeout,
    )


def configmap_resource(api_client: client.ApiClient, watch_timeout: int = 60) -> KubernetesResource:
    """ConfigMaps in the namespace holding the ingress UID record."""
    api = client.CoreV1Api(api_client)
    return KubernetesResource(
        "ConfigMap", api_client,
        list_fn=api.list_namespaced_config_map,
        read_fn=api.read_namespaced_config_map,
        create_fn=api.create_namespaced_config_map,
        replace_fn=api.replace_namespaced_config_map,
        delete_fn=api.delete_namespaced_config_map,
        watch_timeout=watch_timeout,
        namespace=UID_CONFIGMAP_NAMESPACE,
    )


def cluster_resource(api_client: client.ApiClient, settings: Settings) -> KubernetesResource:
    """Cluster membership records (cluster-scoped custom objects)."""
    api = client.CustomObjectsApi(api_client)
    crd = {"group": settings.CLUSTER_GROUP, "version": settings.CLUSTER_VERSION, "plural": settings.CLUSTER_PLURAL}

    def bind(fn):
        return lambda **kwargs: fn(**crd, **kwargs)

    return KubernetesResource(
        "Cluster", api_client,
        list_fn=api.list_cluster_custom_object,
        read_fn=bind(api.get_cluster_custom_object),
        create_fn=bind(api.create_cluster_custom_object),
        replace_fn=bind(api.replace_cluster_custom_object),
        delete_fn=bind(api.delete_cluster_custom_object),
        namespaced=False,
        watch_timeout=settings.WATCH_TIMEOUT,
        **crd,
    )


class KubernetesClusterClient:
    """ClusterClient for one API server."""

    def __init__(self, api_client: client.ApiClient, settings: Settings = default_settings):
        self.api_client = api_client
        self.settings = settings
        self._resources: dict = {}
        self._lock = threading.Lock()

    def resource(self, kind: str) -> KubernetesResource:
        with self._lock:
            if kind not in self._resources:
                self._resources[kind] = self._build(kind)
            return self._resources[kind]

    def _build(self, kind: str) -> KubernetesResource:
        if kind == INGRESSES:
            return ingress_resource(self.api_client, self.settings.WATCH_TIMEOUT)
        if kind == CONFIGMAPS:
            return configmap_resource(self.api_client, self.settings.WATCH_TIMEOUT)
        if kind == CLUSTERS:
            return cluster_resource(self.api_client, self.settings)
        raise ValueError(f"unsupported resource kind: {kind}")


def federation_client(settings: Settings = default_settings) -> KubernetesClusterClient:
    """Client for the federation control plane (federated ingresses and Cluster records)."""
    _ensure_k8s(settings)
    return KubernetesClusterClient(client.ApiClient(), settings)


def kubeconfig_client_factory(settings: Settings = default_settings) -> Callable[[dict], ClusterClient]:
    """
    Build member cluster clients from kubeconfig contexts named after the
    clusters. Raises (and the cluster stays unavailable) when the context is
    missing or unusable.
    """
    def factory(cluster: dict) -> ClusterClient:
        name = cluster["metadata"]["name"]
        try:
            api_client = config.new_client_from_config(config_file=settings.KUBECONFIG or None, context=name)
        except Exception as e:
            raise ClientFactoryError(name, e) from e
        logger.info(f"Built client for cluster {name}")
        return KubernetesClusterClient(api_client, settings)

    return factory
