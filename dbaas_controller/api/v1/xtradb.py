"""
XtraDB cluster API endpoints.

URL Pattern: /api/v1/xtradb/{operation}
"""
from fastapi import APIRouter, status

from dbaas_controller.config.logging import get_logger
from dbaas_controller.models.cluster import (
    ClusterActionResponse,
    ClusterNameRequest,
    CreatePXCClusterRequest,
    GetPXCClusterCredentialsResponse,
    ListPXCClustersResponse,
    UpdatePXCClusterRequest,
)
from dbaas_controller.models.kubernetes import KubeAuthRequest
from dbaas_controller.services.kube_client import KubeClient
from dbaas_controller.services.pxc_cluster import PXCClusterService

router = APIRouter()
logger = get_logger(__name__)


@router.post("/list", response_model=ListPXCClustersResponse)
async def list_clusters(request: KubeAuthRequest):
    """List XtraDB clusters, including clusters still being deleted."""
    async with await KubeClient.connect(request.kube_auth.kubeconfig) as client:
        clusters = await PXCClusterService(client).list_clusters()
    return ListPXCClustersResponse(clusters=clusters)


@router.post("/create", response_model=ClusterActionResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_cluster(request: CreatePXCClusterRequest):
    """
    Create an XtraDB cluster.

    Exactly one of ProxySQL and HAProxy must be given. The cluster starts in
    the changing state; poll the list endpoint until it is ready.
    """
    request.validate_request()
    logger.info("create_pxc_cluster_request", name=request.name, size=request.params.cluster_size)
    async with await KubeClient.connect(request.kube_auth.kubeconfig) as client:
        await PXCClusterService(client).create_cluster(request)
    return ClusterActionResponse(name=request.name)


@router.post("/update", response_model=ClusterActionResponse, status_code=status.HTTP_202_ACCEPTED)
async def update_cluster(request: UpdatePXCClusterRequest):
    """Update size, resources, image or pause state of a ready cluster."""
    request.validate_request()
    logger.info("update_pxc_cluster_request", name=request.name)
    async with await KubeClient.connect(request.kube_auth.kubeconfig) as client:
        await PXCClusterService(client).update_cluster(request)
    return ClusterActionResponse(name=request.name)


@router.post("/delete", response_model=ClusterActionResponse, status_code=status.HTTP_202_ACCEPTED)
async def delete_cluster(request: ClusterNameRequest):
    logger.info("delete_pxc_cluster_request", name=request.name)
    async with await KubeClient.connect(request.kube_auth.kubeconfig) as client:
        await PXCClusterService(client).delete_cluster(request.name)
    return ClusterActionResponse(name=request.name)


@router.post("/restart", response_model=ClusterActionResponse, status_code=status.HTTP_202_ACCEPTED)
async def restart_cluster(request: ClusterNameRequest):
    logger.info("restart_pxc_cluster_request", name=request.name)
    async with await KubeClient.connect(request.kube_auth.kubeconfig) as client:
        await PXCClusterService(client).restart_cluster(request.name)
    return ClusterActionResponse(name=request.name)


@router.post("/credentials", response_model=GetPXCClusterCredentialsResponse)
async def get_credentials(request: ClusterNameRequest):
    """Root credentials; available once the cluster is ready or changing."""
    async with await KubeClient.connect(request.kube_auth.kubeconfig) as client:
        credentials = await PXCClusterService(client).get_credentials(request.name)
    return GetPXCClusterCredentialsResponse(credentials=credentials)
