from dbaas_controller.models.kubernetes import KubeAuth, KubeAuthRequest, Operators
from dbaas_controller.models.logs import LogSource, Logs
from dbaas_controller.models.cluster import ClusterOperation, ComputeResources, PMMParams

__all__ = [
    "KubeAuth",
    "KubeAuthRequest",
    "Operators",
    "LogSource",
    "Logs",
    "ClusterOperation",
    "ComputeResources",
    "PMMParams",
]
