"""
Pydantic models for admin API responses.
"""
from pydantic import BaseModel
from typing import Optional, List


class LoadBalancerIngress(BaseModel):
    ip: Optional[str] = None
    hostname: Optional[str] = None


class ClusterObjectState(BaseModel):
    """One member cluster's view of a federated object."""
    cluster: str
    present: bool
    inSync: bool = False
    loadBalancer: List[LoadBalancerIngress] = []


class FederatedIngressResponse(BaseModel):
    namespace: str
    name: str
    finalizers: List[str] = []
    deletionRequested: bool = False
    firstCluster: Optional[str] = None
    uid: Optional[str] = None
    staticIpName: Optional[str] = None
    loadBalancer: List[LoadBalancerIngress] = []
    clusters: List[ClusterObjectState] = []


class FederatedIngressListResponse(BaseModel):
    ingresses: List[FederatedIngressResponse]
    total: int


class ClusterResponse(BaseModel):
    name: str
    ready: bool
    uidMaster: bool = False
    uid: Optional[str] = None


class ClusterListResponse(BaseModel):
    clusters: List[ClusterResponse]
    total: int


class ErrorResponse(BaseModel):
    detail: str
    code: str = "UNKNOWN_ERROR"
