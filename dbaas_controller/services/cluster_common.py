"""
Helpers shared by the XtraDB and PSMDB translators.

Custom resources are handled as plain dicts, the same shape kubectl returns
with ``-o=json``.
"""
import os
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml

from dbaas_controller.config.logging import get_logger
from dbaas_controller.core.cluster_state import ClusterState, ClusterStateClassifier
from dbaas_controller.exceptions import KubernetesError, ValidationError
from dbaas_controller.models.cluster import (
    ClusterOperation,
    ComputeResources,
    ComputeResourcesUpdate,
    PMMParams,
)
from dbaas_controller.services.kube_client import KubeClient, KubernetesClusterType
from dbaas_controller.utils.convertors import (
    bytes_to_str,
    millicpu_to_str,
    str_to_bytes,
    str_to_millicpu,
)

logger = get_logger(__name__)

PULL_POLICY_IF_NOT_PRESENT = "IfNotPresent"
UPDATE_STRATEGY_ROLLING = "RollingUpdate"

SERVICE_TYPE_CLUSTER_IP = "ClusterIP"
SERVICE_TYPE_NODE_PORT = "NodePort"
SERVICE_TYPE_LOAD_BALANCER = "LoadBalancer"

AFFINITY_OFF = "none"
AFFINITY_HOSTNAME = "kubernetes.io/hostname"

PMM_REQUESTS = {"memory": "300M", "cpu": "500m"}


def api_version(api_group: str, operator_version: str) -> str:
    """CR apiVersion for an operator version: ``1.11.0`` -> ``<group>/v1-11-0``."""
    if not operator_version:
        return f"{api_group}/v1"
    return f"{api_group}/v{operator_version.replace('.', '-')}"


def affinity_topology_key(cluster_type: KubernetesClusterType) -> str:
    # a single minikube node cannot spread pods across hosts
    if cluster_type == KubernetesClusterType.MINIKUBE:
        return AFFINITY_OFF
    return AFFINITY_HOSTNAME


def resources_limits(compute: Optional[ComputeResources]) -> Dict[str, Any]:
    """Container ``resources`` block from requested limits."""
    if compute is None:
        return {}
    limits = {}
    if compute.cpu_m > 0:
        limits["cpu"] = millicpu_to_str(compute.cpu_m)
    if compute.memory_bytes > 0:
        limits["memory"] = bytes_to_str(compute.memory_bytes)
    if not limits:
        return {}
    return {"limits": limits}


def update_resources(component: Dict[str, Any], update: Optional[ComputeResourcesUpdate]) -> None:
    """Apply provided resource fields to ``component["resources"]["limits"]``."""
    if update is None or update.is_empty():
        return
    resources = component.get("resources") or {}
    component["resources"] = resources
    limits = resources.get("limits") or {}
    resources["limits"] = limits
    if update.cpu_m is not None:
        limits["cpu"] = millicpu_to_str(update.cpu_m)
    if update.memory_bytes is not None:
        limits["memory"] = bytes_to_str(update.memory_bytes)


def compute_resources_from_spec(component: Dict[str, Any]) -> Optional[ComputeResources]:
    """Read limits back from a CR component; None when no limits are set."""
    limits = (component.get("resources") or {}).get("limits")
    if not limits:
        return None
    cpu = limits.get("cpu")
    memory = limits.get("memory")
    return ComputeResources(
        cpu_m=str_to_millicpu(str(cpu)) if cpu else 0,
        memory_bytes=str_to_bytes(str(memory)) if memory else 0,
    )


def volume_spec(disk_size: int) -> Dict[str, Any]:
    return {
        "persistentVolumeClaim": {
            "resources": {"requests": {"storage": bytes_to_str(disk_size)}},
        },
    }


def set_volume_size(component: Dict[str, Any], disk_size: int) -> None:
    """Set the PVC storage request, creating the volume spec when missing."""
    volume = component.get("volumeSpec")
    if not volume or not volume.get("persistentVolumeClaim"):
        component["volumeSpec"] = volume_spec(disk_size)
        return
    claim = volume["persistentVolumeClaim"]
    requests = claim.setdefault("resources", {}).setdefault("requests", {})
    requests["storage"] = bytes_to_str(disk_size)


def disk_size_from_spec(component: Dict[str, Any]) -> int:
    claim = (component.get("volumeSpec") or {}).get("persistentVolumeClaim") or {}
    storage = ((claim.get("resources") or {}).get("requests") or {}).get("storage")
    return str_to_bytes(str(storage or "0"))


def validate_image(current: str, new: str) -> None:
    """
    Check that ``new`` can replace ``current``.

    The new image must carry a tag and keep the repository. Callers skip the
    check when the image is unchanged.
    """
    repo, sep, tag = new.rpartition(":")
    # a colon inside a registry host:port is not a tag separator
    if not sep or not tag or "/" in tag:
        raise ValidationError("image has to have version tag", details={"image": new})

    current_repo, current_sep, current_tag = current.rpartition(":")
    if not current_sep or "/" in current_tag:
        current_repo = current

    if repo != current_repo:
        raise ValidationError(
            "image repository must stay the same",
            details={"current": current, "requested": new},
        )


def load_cr_template(path: str) -> Optional[Dict[str, Any]]:
    """Custom resource template from a YAML file, None when the file is absent."""
    if not path or not os.path.exists(path):
        return None
    with open(path, "r") as f:
        template = yaml.safe_load(f)
    if not isinstance(template, dict):
        raise KubernetesError(f"CR template {path} is not a YAML mapping")
    logger.info("loaded_cr_template", path=path)
    return template


def pmm_spec(pmm: Optional[PMMParams], image: str) -> Dict[str, Any]:
    if pmm is None:
        return {"enabled": False}
    return {
        "enabled": True,
        "serverHost": pmm.public_address,
        "serverUser": pmm.login,
        "image": image,
        "imagePullPolicy": PULL_POLICY_IF_NOT_PRESENT,
        "resources": {"requests": dict(PMM_REQUESTS)},
    }


def operation_from_pairs(pairs: Sequence[Tuple[int, int]], message: str = "") -> ClusterOperation:
    """Operation progress from (size, ready) pairs of every component."""
    return ClusterOperation(
        finished_steps=sum(ready for _, ready in pairs),
        total_steps=sum(size for size, _ in pairs),
        message=message,
    )


def component_pair(status: Dict[str, Any]) -> Tuple[int, int]:
    return int(status.get("size") or 0), int(status.get("ready") or 0)


def expose_service_type(cluster_type: KubernetesClusterType, expose: bool) -> str:
    """Service type of the client-facing service; LoadBalancer is not available on minikube."""
    if not expose:
        return SERVICE_TYPE_CLUSTER_IP
    if cluster_type == KubernetesClusterType.MINIKUBE:
        return SERVICE_TYPE_NODE_PORT
    return SERVICE_TYPE_LOAD_BALANCER


async def derive_state(
    client: KubeClient,
    cluster: Dict[str, Any],
    container: str,
    cr_image: str,
    subcomponent_states: Optional[List[str]] = None,
) -> ClusterState:
    """
    State of a cluster custom resource.

    When the operator state maps to CHANGING, pods are inspected to tell a
    regular change from an image upgrade.
    """
    name = cluster["metadata"]["name"]
    spec = cluster.get("spec") or {}
    status = cluster.get("status") or {}

    state = ClusterStateClassifier.classify(
        status.get("state"),
        subcomponent_states,
        paused=bool(spec.get("pause")),
    )
    if state != ClusterState.CHANGING:
        return state

    images_match = await client.images_match(name, container, cr_image)
    resolved = ClusterStateClassifier.resolve_upgrading(state, images_match)
    if images_match is None:
        logger.warning("cluster_state_invalid_image_check_failed", cluster=name)
    return resolved
