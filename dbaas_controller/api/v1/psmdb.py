"""
PSMDB replica set API endpoints.

URL Pattern: /api/v1/psmdb/{operation}
"""
from fastapi import APIRouter, status

from dbaas_controller.config.logging import get_logger
from dbaas_controller.models.cluster import (
    ClusterActionResponse,
    ClusterNameRequest,
    CreatePSMDBClusterRequest,
    GetPSMDBClusterCredentialsResponse,
    ListPSMDBClustersResponse,
    UpdatePSMDBClusterRequest,
)
from dbaas_controller.models.kubernetes import KubeAuthRequest
from dbaas_controller.services.kube_client import KubeClient
from dbaas_controller.services.psmdb_cluster import PSMDBClusterService

router = APIRouter()
logger = get_logger(__name__)


@router.post("/list", response_model=ListPSMDBClustersResponse)
async def list_clusters(request: KubeAuthRequest):
    async with await KubeClient.connect(request.kube_auth.kubeconfig) as client:
        clusters = await PSMDBClusterService(client).list_clusters()
    return ListPSMDBClustersResponse(clusters=clusters)


@router.post("/create", response_model=ClusterActionResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_cluster(request: CreatePSMDBClusterRequest):
    request.validate_request()
    logger.info("create_psmdb_cluster_request", name=request.name, size=request.params.cluster_size)
    async with await KubeClient.connect(request.kube_auth.kubeconfig) as client:
        await PSMDBClusterService(client).create_cluster(request)
    return ClusterActionResponse(name=request.name)


@router.post("/update", response_model=ClusterActionResponse, status_code=status.HTTP_202_ACCEPTED)
async def update_cluster(request: UpdatePSMDBClusterRequest):
    request.validate_request()
    logger.info("update_psmdb_cluster_request", name=request.name)
    async with await KubeClient.connect(request.kube_auth.kubeconfig) as client:
        await PSMDBClusterService(client).update_cluster(request)
    return ClusterActionResponse(name=request.name)


@router.post("/delete", response_model=ClusterActionResponse, status_code=status.HTTP_202_ACCEPTED)
async def delete_cluster(request: ClusterNameRequest):
    logger.info("delete_psmdb_cluster_request", name=request.name)
    async with await KubeClient.connect(request.kube_auth.kubeconfig) as client:
        await PSMDBClusterService(client).delete_cluster(request.name)
    return ClusterActionResponse(name=request.name)


@router.post("/restart", response_model=ClusterActionResponse, status_code=status.HTTP_202_ACCEPTED)
async def restart_cluster(request: ClusterNameRequest):
    logger.info("restart_psmdb_cluster_request", name=request.name)
    async with await KubeClient.connect(request.kube_auth.kubeconfig) as client:
        await PSMDBClusterService(client).restart_cluster(request.name)
    return ClusterActionResponse(name=request.name)


@router.post("/credentials", response_model=GetPSMDBClusterCredentialsResponse)
async def get_credentials(request: ClusterNameRequest):
    """User admin credentials; available only when the replica set is ready."""
    async with await KubeClient.connect(request.kube_auth.kubeconfig) as client:
        credentials = await PSMDBClusterService(client).get_credentials(request.name)
    return GetPSMDBClusterCredentialsResponse(credentials=credentials)
