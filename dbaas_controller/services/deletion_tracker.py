"""
Detection of clusters that are still being deleted.

Custom resource deletion returns before the operator has removed the pods.
A cluster whose resource is gone but whose pods are still running is
reported as Deleting until the last pod disappears.
"""
from typing import List, Set

from dbaas_controller.config.logging import get_logger
from dbaas_controller.services.kube_client import INSTANCE_LABEL, MANAGED_BY_LABEL, KubeClient

logger = get_logger(__name__)

PXC_OPERATOR_DEPLOYMENT = "percona-xtradb-cluster-operator"
PSMDB_OPERATOR_DEPLOYMENT = "percona-server-mongodb-operator"


async def find_deleting_clusters(client: KubeClient, managed_by: str, running: Set[str]) -> List[str]:
    """
    Names of clusters that have pods but no custom resource.

    Args:
        client: Kubernetes client
        managed_by: operator deployment name expected in the managed-by label
        running: names of clusters listed as custom resources; every name
            found is added to it

    Returns:
        Names in pod order, each reported once
    """
    pods = await client.get_pods()

    deleting: List[str] = []
    for pod in pods:
        labels = (pod.get("metadata") or {}).get("labels") or {}
        name = labels.get(INSTANCE_LABEL)
        if not name or name in running:
            continue
        if labels.get(MANAGED_BY_LABEL) != managed_by:
            continue
        deleting.append(name)
        running.add(name)

    if deleting:
        logger.debug("found_deleting_clusters", managed_by=managed_by, clusters=deleting)
    return deleting
