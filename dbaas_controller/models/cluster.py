"""
Pydantic models for XtraDB (PXC) and MongoDB replica set (PSMDB) clusters.

Create requests carry complete parameters. Update requests use optional
fields: None means "leave unchanged", any provided value is applied.
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from dbaas_controller.core.cluster_state import ClusterState
from dbaas_controller.exceptions import ValidationError
from dbaas_controller.models.kubernetes import KubeAuthRequest

CLUSTER_NAME_PATTERN = "^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"


class ComputeResources(BaseModel):
    """Container resource limits."""

    cpu_m: int = Field(default=0, ge=0, description="CPU in millicpu")
    memory_bytes: int = Field(default=0, ge=0, description="Memory in bytes")


class ComputeResourcesUpdate(BaseModel):
    """Container resource limits to change; None keeps the current value."""

    cpu_m: Optional[int] = Field(default=None, ge=0, description="CPU in millicpu")
    memory_bytes: Optional[int] = Field(default=None, ge=0, description="Memory in bytes")

    def is_empty(self) -> bool:
        return self.cpu_m is None and self.memory_bytes is None


class PMMParams(BaseModel):
    """PMM server the monitoring sidecar reports to."""

    public_address: str = Field(..., min_length=1, description="PMM server public address")
    login: str = Field(default="", description="PMM server login")
    password: str = Field(default="", description="PMM server password")


class ClusterOperation(BaseModel):
    """Progress of the running operation, counted in ready pods."""

    finished_steps: int = 0
    total_steps: int = 0
    message: str = ""


class ClusterNameRequest(KubeAuthRequest):
    """Base for requests addressing one cluster."""

    name: str = Field(
        ...,
        min_length=1,
        max_length=63,
        pattern=CLUSTER_NAME_PATTERN,
        description="Cluster name (DNS-1123 compliant)",
    )


class ClusterActionResponse(BaseModel):
    """Response for accepted create/update/delete/restart requests."""

    name: str
    status: str = "accepted"


class SuspendResumeParams(BaseModel):
    """Pause flags shared by update requests."""

    suspend: bool = Field(default=False, description="Pause the cluster")
    resume: bool = Field(default=False, description="Resume a paused cluster")

    def check_suspend_resume(self) -> None:
        if self.suspend and self.resume:
            raise ValidationError("resume and suspend cannot be set together")


# XtraDB


class PXCComponent(BaseModel):
    """PXC data nodes."""

    image: Optional[str] = Field(default=None, description="PXC image, operator default when empty")
    compute_resources: Optional[ComputeResources] = None
    disk_size: int = Field(default=0, ge=0, description="Disk size in bytes")


class ProxySQLComponent(BaseModel):
    image: Optional[str] = None
    compute_resources: Optional[ComputeResources] = None
    disk_size: int = Field(default=0, ge=0, description="Disk size in bytes")


class HAProxyComponent(BaseModel):
    image: Optional[str] = None
    compute_resources: Optional[ComputeResources] = None


class PXCClusterParams(BaseModel):
    """Parameters of a new XtraDB cluster."""

    cluster_size: int = Field(..., ge=1, le=99, description="Number of PXC nodes")
    pxc: PXCComponent
    proxysql: Optional[ProxySQLComponent] = None
    haproxy: Optional[HAProxyComponent] = None
    version_service_url: Optional[str] = None


class CreatePXCClusterRequest(ClusterNameRequest):
    """Request model for creating an XtraDB cluster."""

    params: PXCClusterParams
    pmm: Optional[PMMParams] = None
    expose: bool = Field(default=False, description="Expose the cluster outside Kubernetes")

    def validate_request(self) -> None:
        if (self.params.proxysql is None) == (self.params.haproxy is None):
            raise ValidationError("pxc cluster must have one and only one proxy type defined")


class PXCComponentUpdate(BaseModel):
    compute_resources: Optional[ComputeResourcesUpdate] = None
    image: Optional[str] = Field(default=None, description="New PXC image, same repository with another tag")


class ProxyUpdate(BaseModel):
    compute_resources: Optional[ComputeResourcesUpdate] = None


class UpdatePXCClusterParams(SuspendResumeParams):
    cluster_size: Optional[int] = Field(default=None, ge=1, le=99)
    pxc: Optional[PXCComponentUpdate] = None
    proxysql: Optional[ProxyUpdate] = None
    haproxy: Optional[ProxyUpdate] = None


class UpdatePXCClusterRequest(ClusterNameRequest):
    """Request model for updating an XtraDB cluster."""

    params: UpdatePXCClusterParams

    def validate_request(self) -> None:
        self.params.check_suspend_resume()
        if self.params.proxysql is not None and self.params.haproxy is not None:
            raise ValidationError("can't update both proxies, only one should be in use")


class PXCComponentView(BaseModel):
    image: str = ""
    disk_size: int = 0
    compute_resources: Optional[ComputeResources] = None


class ProxySQLView(BaseModel):
    disk_size: int = 0
    compute_resources: Optional[ComputeResources] = None


class HAProxyView(BaseModel):
    compute_resources: Optional[ComputeResources] = None


class PXCParamsView(BaseModel):
    cluster_size: int = 0
    pxc: PXCComponentView = Field(default_factory=PXCComponentView)
    proxysql: Optional[ProxySQLView] = None
    haproxy: Optional[HAProxyView] = None


class PXCClusterSummary(BaseModel):
    """XtraDB cluster as seen in a list response."""

    name: str
    state: ClusterState
    operation: ClusterOperation = Field(default_factory=ClusterOperation)
    params: PXCParamsView = Field(default_factory=PXCParamsView)
    exposed: bool = False
    paused: bool = False


class ListPXCClustersResponse(BaseModel):
    clusters: List[PXCClusterSummary]


class PXCCredentials(BaseModel):
    username: str
    password: str
    host: str
    port: int


class GetPXCClusterCredentialsResponse(BaseModel):
    credentials: PXCCredentials


# MongoDB replica set


class ReplicasetComponent(BaseModel):
    compute_resources: Optional[ComputeResources] = None
    disk_size: int = Field(default=0, ge=0, description="Disk size in bytes")


class PSMDBClusterParams(BaseModel):
    """Parameters of a new PSMDB cluster."""

    cluster_size: int = Field(..., ge=1, le=99, description="Number of replica set members")
    replicaset: ReplicasetComponent = Field(default_factory=ReplicasetComponent)
    image: Optional[str] = Field(default=None, description="PSMDB image, default when empty")
    backup_image: Optional[str] = Field(default=None, description="Backup image, derived from operator when empty")
    version_service_url: Optional[str] = None


class CreatePSMDBClusterRequest(ClusterNameRequest):
    """Request model for creating a PSMDB cluster."""

    params: PSMDBClusterParams
    pmm: Optional[PMMParams] = None
    expose: bool = Field(default=False, description="Expose the cluster outside Kubernetes")

    def validate_request(self) -> None:
        """Create parameters are fully checked by pydantic."""


class ReplicasetUpdate(BaseModel):
    compute_resources: Optional[ComputeResourcesUpdate] = None


class UpdatePSMDBClusterParams(SuspendResumeParams):
    cluster_size: Optional[int] = Field(default=None, ge=1, le=99)
    replicaset: Optional[ReplicasetUpdate] = None
    image: Optional[str] = None


class UpdatePSMDBClusterRequest(ClusterNameRequest):
    """Request model for updating a PSMDB cluster."""

    params: UpdatePSMDBClusterParams

    def validate_request(self) -> None:
        self.params.check_suspend_resume()


class ReplicasetView(BaseModel):
    disk_size: int = 0
    compute_resources: Optional[ComputeResources] = None


class PSMDBParamsView(BaseModel):
    cluster_size: int = 0
    image: str = ""
    replicaset: ReplicasetView = Field(default_factory=ReplicasetView)


class PSMDBClusterSummary(BaseModel):
    """PSMDB cluster as seen in a list response."""

    name: str
    state: ClusterState
    operation: ClusterOperation = Field(default_factory=ClusterOperation)
    params: PSMDBParamsView = Field(default_factory=PSMDBParamsView)
    exposed: bool = False
    paused: bool = False


class ListPSMDBClustersResponse(BaseModel):
    clusters: List[PSMDBClusterSummary]


class PSMDBCredentials(BaseModel):
    username: str
    password: str
    host: str
    port: int
    replicaset: str


class GetPSMDBClusterCredentialsResponse(BaseModel):
    credentials: PSMDBCredentials
