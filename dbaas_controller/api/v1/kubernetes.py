"""
Kubernetes cluster connectivity endpoints.
"""
from fastapi import APIRouter

from dbaas_controller.config.logging import get_logger
from dbaas_controller.exceptions import KubectlError, PreconditionFailedError
from dbaas_controller.models.kubernetes import CheckConnectionRequest, CheckConnectionResponse
from dbaas_controller.services.kube_client import KubeClient

router = APIRouter()
logger = get_logger(__name__)


@router.post("/check-connection", response_model=CheckConnectionResponse)
async def check_connection(request: CheckConnectionRequest):
    """
    Check that the Kubernetes cluster is reachable.

    Returns the versions of the installed database operators.
    """
    try:
        async with await KubeClient.connect(request.kube_auth.kubeconfig) as client:
            operators = await client.check_operators()
    except KubectlError as e:
        logger.warning("kubernetes_connection_failed", error=e.message)
        raise PreconditionFailedError(
            f"Unable to connect to Kubernetes cluster: {e.message}",
            details={"stderr": e.stderr},
        ) from e

    logger.info(
        "kubernetes_connection_checked",
        pxc_operator_version=operators.pxc_operator_version,
        psmdb_operator_version=operators.psmdb_operator_version,
    )
    return CheckConnectionResponse(operators=operators)
