"""
Cluster logs endpoint.
"""
from fastapi import APIRouter

from dbaas_controller.models.logs import GetLogsRequest, GetLogsResponse
from dbaas_controller.services import logs as logs_service
from dbaas_controller.services.kube_client import KubeClient

router = APIRouter()


@router.post("/get", response_model=GetLogsResponse)
async def get_logs(request: GetLogsRequest):
    """
    Logs of every container of the cluster pods plus pod events.

    The overall number of returned lines is limited; newest lines win.
    """
    logs_service.collector_for(request.source)
    async with await KubeClient.connect(request.kube_auth.kubeconfig) as client:
        entries = await logs_service.get_logs(request.source, client, request.cluster_name)
    return GetLogsResponse(logs=entries)
