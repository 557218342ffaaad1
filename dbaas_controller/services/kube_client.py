"""
Kubernetes client built on top of kubectl.

Provides the object-level operations used by the cluster translators:
custom resources, secrets, pods, storage classes, API versions, stateful set
restarts, container logs and pod events.
"""
import base64
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from dbaas_controller.config.logging import get_logger
from dbaas_controller.config.settings import settings
from dbaas_controller.exceptions import KubectlError, KubectlNotFoundError
from dbaas_controller.models.kubernetes import Operators
from dbaas_controller.services.kubectl import KubeCtl

logger = get_logger(__name__)

INSTANCE_LABEL = "app.kubernetes.io/instance"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"

PXC_API_GROUP = "pxc.percona.com"
PSMDB_API_GROUP = "psmdb.percona.com"

CONTAINER_STATE_WAITING = "waiting"


class KubernetesClusterType(str, Enum):
    """Kind of Kubernetes installation, guessed from storage classes."""
    UNKNOWN = "unknown"
    EKS = "eks"
    MINIKUBE = "minikube"


MINIKUBE_PROVISIONERS = ("minikube", "kubevirt.io/hostpath-provisioner", "standard")


def parse_operator_version(api_versions: Sequence[str], api_group: str) -> str:
    """
    Latest operator version advertised under ``api_group``.

    Operators register one API version per release, e.g.
    ``pxc.percona.com/v1-11-0``. Returns "" when the operator is not installed.
    """
    latest: Optional[tuple] = None
    for api_version in api_versions:
        if not api_version.startswith(api_group + "/"):
            continue
        version = api_version.split("/", 1)[1].lstrip("v")
        parts = version.split("-")
        if len(parts) != 3:
            continue
        try:
            parsed = tuple(int(p) for p in parts)
        except ValueError:
            logger.warning("cannot_parse_operator_version", api_version=api_version)
            continue
        if latest is None or parsed > latest:
            latest = parsed
    if latest is None:
        return ""
    return ".".join(str(p) for p in latest)


def is_container_in_state(statuses: Sequence[Dict[str, Any]], state: str, container: str) -> bool:
    for status in statuses or []:
        if status.get("name") == container and state in (status.get("state") or {}):
            return True
    return False


class KubeClient:
    """
    Request-scoped Kubernetes client.

    Use as an async context manager so the kubeconfig temp dir is always
    removed:

        async with await KubeClient.connect(kubeconfig) as client:
            await client.list_objects("perconaxtradbcluster")
    """

    def __init__(self, kubectl: KubeCtl):
        self.kubectl = kubectl

    @classmethod
    async def connect(cls, kubeconfig: str) -> "KubeClient":
        return cls(await KubeCtl.create(kubeconfig))

    async def __aenter__(self) -> "KubeClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def cleanup(self) -> None:
        self.kubectl.cleanup()

    # Generic objects

    async def get_object(self, kind: str, name: str) -> Dict[str, Any]:
        """Fetch one object. Raises KubectlNotFoundError when missing."""
        return await self.kubectl.get(kind, name)

    async def list_objects(self, kind: str, extra_args: Sequence[str] = ()) -> List[Dict[str, Any]]:
        result = await self.kubectl.get(kind, extra_args=extra_args)
        return result.get("items") or []

    async def apply(self, resource: Dict[str, Any]) -> None:
        logger.debug(
            "applying_resource",
            kind=resource.get("kind"),
            name=resource.get("metadata", {}).get("name"),
        )
        await self.kubectl.apply(resource)

    async def delete(self, resource: Dict[str, Any]) -> None:
        await self.kubectl.delete(resource)

    async def run(self, args: Sequence[str], stdin: Any = None) -> bytes:
        return await self.kubectl.run(args, stdin=stdin)

    # Secrets

    async def get_secret(self, name: str) -> Dict[str, str]:
        """Secret data decoded from base64."""
        secret = await self.get_object("secret", name)
        data = secret.get("data") or {}
        return {key: base64.b64decode(value).decode() for key, value in data.items()}

    async def create_secret(self, name: str, data: Dict[str, str]) -> None:
        secret = {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {"name": name},
            "type": "Opaque",
            "data": {key: base64.b64encode(value.encode()).decode() for key, value in data.items()},
        }
        await self.apply(secret)

    async def delete_secret(self, name: str) -> None:
        await self.delete({"apiVersion": "v1", "kind": "Secret", "metadata": {"name": name}})

    # Cluster information

    async def get_storage_classes(self) -> List[Dict[str, Any]]:
        return await self.list_objects("storageclass")

    async def get_cluster_type(self) -> KubernetesClusterType:
        """
        Guess the installation type from storage class provisioners.

        Errors are logged and reported as UNKNOWN.
        """
        try:
            classes = await self.get_storage_classes()
        except KubectlError as e:
            logger.error("failed_to_get_cluster_type", error=e.message)
            return KubernetesClusterType.UNKNOWN

        for storage_class in classes:
            provisioner = storage_class.get("provisioner") or ""
            if "aws" in provisioner:
                return KubernetesClusterType.EKS
            if any(p in provisioner for p in MINIKUBE_PROVISIONERS):
                return KubernetesClusterType.MINIKUBE
        return KubernetesClusterType.UNKNOWN

    async def get_api_versions(self) -> List[str]:
        stdout = await self.run(["api-versions"])
        return [line.strip() for line in stdout.decode().splitlines() if line.strip()]

    async def check_operators(self) -> Operators:
        api_versions = await self.get_api_versions()
        return Operators(
            pxc_operator_version=parse_operator_version(api_versions, PXC_API_GROUP),
            psmdb_operator_version=parse_operator_version(api_versions, PSMDB_API_GROUP),
        )

    # Pods

    async def get_pods(self, label_selector: Optional[str] = None) -> List[Dict[str, Any]]:
        extra = [f"--selector={label_selector}"] if label_selector else []
        return await self.list_objects("pods", extra_args=extra)

    async def get_cluster_pods(self, cluster_name: str) -> List[Dict[str, Any]]:
        return await self.get_pods(f"{INSTANCE_LABEL}={cluster_name}")

    async def images_match(self, cluster_name: str, container_name: str, cr_image: str) -> Optional[bool]:
        """
        Whether every pod of the cluster runs ``cr_image`` in ``container_name``.

        Returns True when there are no pods to compare, None when pods
        cannot be listed.
        """
        try:
            pods = await self.get_cluster_pods(cluster_name)
        except KubectlError as e:
            logger.warning("failed_to_check_cluster_images", cluster=cluster_name, error=e.message)
            return None
        if not pods:
            return True

        images = set()
        for pod in pods:
            for container in (pod.get("spec") or {}).get("containers") or []:
                if container.get("name") == container_name and container.get("image"):
                    images.add(container["image"])
        return images == {cr_image}

    # Workloads

    async def get_statefulset(self, name: str) -> Dict[str, Any]:
        return await self.get_object("statefulset", name)

    async def restart_statefulset(self, name: str) -> None:
        logger.info("restarting_statefulset", name=name)
        await self.run(["rollout", "restart", f"statefulset/{name}"])

    async def restart_statefulset_if_exists(self, name: str) -> bool:
        try:
            await self.get_statefulset(name)
        except KubectlNotFoundError:
            return False
        await self.restart_statefulset(name)
        return True

    # Logs

    async def get_logs(
        self,
        statuses: Sequence[Dict[str, Any]],
        pod: str,
        container: str,
    ) -> List[str]:
        """Log lines of one container; empty for containers still waiting."""
        if is_container_in_state(statuses, CONTAINER_STATE_WAITING, container):
            return []
        args = ["logs", pod, f"--tail={settings.logs_tail_lines}"]
        if container:
            args.append(f"--container={container}")
        stdout = (await self.run(args)).decode(errors="replace")
        stdout = stdout.rstrip("\n")
        if not stdout:
            return []
        return stdout.split("\n")

    async def get_events(self, pod: str) -> List[str]:
        """``kubectl describe pod`` output, events included, as lines."""
        stdout = await self.run(["describe", "pod", pod])
        return stdout.decode(errors="replace").split("\n")
