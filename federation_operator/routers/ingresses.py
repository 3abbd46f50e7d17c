"""
Admin API routes — read-only view of federated ingresses and member clusters.

Everything is served from the controller's informer caches; no request
reaches a member cluster.
"""

import logging

from fastapi import APIRouter, HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from ..config import settings
from ..controller import FederationController
from ..events import recent_events
from ..models import (
    ClusterListResponse,
    ClusterObjectState,
    ClusterResponse,
    ErrorResponse,
    FederatedIngressListResponse,
    FederatedIngressResponse,
    LoadBalancerIngress,
)
from ..objects import (
    FIRST_CLUSTER_ANNOTATION,
    STATIC_IP_NAME_KEY_WRITABLE,
    UID_ANNOTATION_KEY,
    annotations,
    finalizers,
    is_cluster_ready,
    is_deletion_requested,
    load_balancer_ingress,
    object_key,
)

logger = logging.getLogger("ingresses")

router = APIRouter(tags=["federation"])
limiter = Limiter(key_func=get_remote_address)


def _controller(request: Request) -> FederationController:
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        logger.warning(f"{request.url.path} requested before the controller started")
        raise HTTPException(status_code=503, detail="Controller not running")
    return controller


def _lb(items: list) -> list[LoadBalancerIngress]:
    return [LoadBalancerIngress(ip=i.get("ip"), hostname=i.get("hostname")) for i in items]


def _describe(controller: FederationController, federated: dict) -> FederatedIngressResponse:
    """Convert a cached federated object plus its cluster objects into a response model."""
    key = object_key(federated)
    meta = federated["metadata"]
    notes = annotations(federated)
    store = controller.cluster_informer.get_target_store()

    clusters = []
    for cluster in controller.cluster_informer.get_ready_clusters():
        name = cluster["metadata"]["name"]
        existing = store.get_by_key(name, key)
        if existing is None:
            clusters.append(ClusterObjectState(cluster=name, present=False))
            continue
        desired = controller.policy.desired_object(federated, existing)
        clusters.append(ClusterObjectState(
            cluster=name,
            present=True,
            inSync=not controller.policy.needs_update(desired, existing),
            loadBalancer=_lb(load_balancer_ingress(existing)),
        ))

    return FederatedIngressResponse(
        namespace=meta.get("namespace", ""),
        name=meta["name"],
        finalizers=finalizers(federated),
        deletionRequested=is_deletion_requested(federated),
        firstCluster=notes.get(FIRST_CLUSTER_ANNOTATION),
        uid=notes.get(UID_ANNOTATION_KEY),
        staticIpName=notes.get(STATIC_IP_NAME_KEY_WRITABLE),
        loadBalancer=_lb(load_balancer_ingress(federated)),
        clusters=clusters,
    )


# =========================================================================
# REST Endpoints
# =========================================================================

@router.get("/ingresses", response_model=FederatedIngressListResponse)
@limiter.limit(settings.RATE_LIMIT)
async def list_ingresses_endpoint(request: Request):
    """List federated ingresses with their per-cluster state."""
    controller = _controller(request)
    ingresses = [_describe(controller, obj) for obj in controller.federated_store.list()]
    ingresses.sort(key=lambda i: (i.namespace, i.name))
    return FederatedIngressListResponse(ingresses=ingresses, total=len(ingresses))


@router.get("/ingresses/{namespace}/{name}", response_model=FederatedIngressResponse,
            responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def get_ingress_endpoint(namespace: str, name: str, request: Request):
    controller = _controller(request)
    federated = controller.federated_store.get_by_key(f"{namespace}/{name}")
    if federated is None:
        raise HTTPException(status_code=404, detail=f"Ingress '{namespace}/{name}' not found")
    return _describe(controller, federated)


@router.get("/ingresses/{namespace}/{name}/events")
@limiter.limit(settings.RATE_LIMIT)
async def get_ingress_events(namespace: str, name: str, request: Request):
    """Recent reconcile events from the Redis Stream (empty when Redis is disabled)."""
    key = f"{namespace}/{name}"
    return {"key": key, "events": recent_events(key)}


@router.get("/clusters", response_model=ClusterListResponse)
@limiter.limit(settings.RATE_LIMIT)
async def list_clusters_endpoint(request: Request):
    """Member clusters currently watched, with their UID coordination role."""
    controller = _controller(request)
    master = controller.uid_coordinator.master_cluster() if controller.uid_coordinator else None
    master_name = master["metadata"]["name"] if master else None
    clusters = [
        ClusterResponse(
            name=c["metadata"]["name"],
            ready=is_cluster_ready(c),
            uidMaster=c["metadata"]["name"] == master_name,
            uid=annotations(c).get(UID_ANNOTATION_KEY),
        )
        for c in controller.cluster_informer.get_ready_clusters()
    ]
    return ClusterListResponse(clusters=clusters, total=len(clusters))
