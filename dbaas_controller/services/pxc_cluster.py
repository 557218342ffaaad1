"""
Percona XtraDB Cluster (PXC) translator.

Turns API requests into PerconaXtraDBCluster custom resources and reads
cluster state back from them.
"""
import copy
from typing import Any, Dict, List, Optional, Set

from dbaas_controller.config.logging import get_logger
from dbaas_controller.config.settings import settings
from dbaas_controller.core.cluster_state import ClusterState
from dbaas_controller.exceptions import (
    ClusterNotReadyError,
    ConflictError,
    KubectlError,
    KubectlNotFoundError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)
from dbaas_controller.models.cluster import (
    CreatePXCClusterRequest,
    HAProxyView,
    PXCClusterSummary,
    PXCComponentView,
    PXCCredentials,
    PXCParamsView,
    ProxySQLView,
    UpdatePXCClusterRequest,
)
from dbaas_controller.services import cluster_common as common
from dbaas_controller.services.credentials import (
    PXC_ADMIN_PASSWORD_KEY,
    build_secret_data,
    delete_secrets_best_effort,
    generate_pxc_passwords,
)
from dbaas_controller.services.deletion_tracker import PXC_OPERATOR_DEPLOYMENT, find_deleting_clusters
from dbaas_controller.services.kube_client import PXC_API_GROUP, KubeClient, KubernetesClusterType

logger = get_logger(__name__)

PXC_KIND = "PerconaXtraDBCluster"
PXC_RESOURCE = "perconaxtradbclusters"
PXC_CONTAINER = "pxc"
PXC_PORT = 3306
PXC_USERNAME = "root"

DEFAULT_PXC_IMAGE = "percona/percona-xtradb-cluster:8.0.20-11.1"
OPERATOR_IMAGE = "percona/percona-xtradb-cluster-operator"
OPERATOR_SERVICE_ACCOUNT = "percona-xtradb-cluster-operator"

BACKUP_SCHEDULE_NAME = "test"
BACKUP_SCHEDULE = "*/30 * * * *"
BACKUP_KEEP = 3

FINALIZERS = ["delete-proxysql-pvc", "delete-pxc-pvc"]


def secret_name(cluster_name: str) -> str:
    return f"dbaas-{cluster_name}-pxc-secrets"


def internal_secret_name(cluster_name: str) -> str:
    return f"internal-{cluster_name}"


def backup_storage_name(cluster_name: str) -> str:
    return f"pxc-backup-storage-{cluster_name}"


def default_proxysql_image(operator_version: str) -> str:
    return f"{OPERATOR_IMAGE}:{operator_version}-proxysql"


def default_haproxy_image(operator_version: str) -> str:
    return f"{OPERATOR_IMAGE}:{operator_version}-haproxy"


def default_backup_image(operator_version: str) -> str:
    return f"{OPERATOR_IMAGE}:{operator_version}-pxc8.0-backup"


def backup_storages(cluster_name: str, disk_size: int) -> Dict[str, Any]:
    return {
        backup_storage_name(cluster_name): {
            "type": "filesystem",
            "volume": common.volume_spec(disk_size),
        },
    }


def backup_spec(cluster_name: str, operator_version: str, disk_size: int) -> Dict[str, Any]:
    """Filesystem backups every 30 minutes, keeping the last three."""
    return {
        "image": default_backup_image(operator_version),
        "schedule": [
            {
                "name": BACKUP_SCHEDULE_NAME,
                "schedule": BACKUP_SCHEDULE,
                "keep": BACKUP_KEEP,
                "storageName": backup_storage_name(cluster_name),
            }
        ],
        "storages": backup_storages(cluster_name, disk_size),
        "serviceAccountName": OPERATOR_SERVICE_ACCOUNT,
    }


class PXCClusterService:
    """XtraDB cluster operations against one Kubernetes cluster."""

    def __init__(self, client: KubeClient):
        self.client = client

    async def get_cluster(self, name: str) -> Dict[str, Any]:
        return await self.client.get_object(PXC_RESOURCE, name)

    # List

    async def list_clusters(self) -> List[PXCClusterSummary]:
        """
        All XtraDB clusters, including clusters whose resource is already
        deleted but whose pods are still terminating.
        """
        items = await self.client.list_objects(PXC_RESOURCE)

        clusters = []
        running: Set[str] = set()
        for item in items:
            clusters.append(await self._summary(item))
            running.add(item["metadata"]["name"])

        for name in await find_deleting_clusters(self.client, PXC_OPERATOR_DEPLOYMENT, running):
            clusters.append(PXCClusterSummary(name=name, state=ClusterState.DELETING))

        logger.debug("listed_pxc_clusters", count=len(clusters))
        return clusters

    async def _summary(self, item: Dict[str, Any]) -> PXCClusterSummary:
        name = item["metadata"]["name"]
        spec = item.get("spec") or {}
        status = item.get("status") or {}
        pxc = spec.get("pxc") or {}

        params = PXCParamsView(
            cluster_size=int(pxc.get("size") or 0),
            pxc=PXCComponentView(
                image=pxc.get("image") or "",
                disk_size=common.disk_size_from_spec(pxc),
                compute_resources=common.compute_resources_from_spec(pxc),
            ),
        )

        proxy: Dict[str, Any] = {}
        proxysql = spec.get("proxysql") or {}
        haproxy = spec.get("haproxy") or {}
        if proxysql.get("enabled"):
            proxy = proxysql
            params.proxysql = ProxySQLView(
                disk_size=common.disk_size_from_spec(proxysql),
                compute_resources=common.compute_resources_from_spec(proxysql),
            )
        elif haproxy.get("enabled"):
            proxy = haproxy
            params.haproxy = HAProxyView(compute_resources=common.compute_resources_from_spec(haproxy))

        summary = PXCClusterSummary(
            name=name,
            state=await common.derive_state(self.client, item, PXC_CONTAINER, pxc.get("image") or ""),
            params=params,
            exposed=bool(proxy.get("serviceType")) and proxy.get("serviceType") != common.SERVICE_TYPE_CLUSTER_IP,
            paused=bool(spec.get("pause")),
        )

        if status.get("conditions"):
            pairs = [
                common.component_pair(status[component])
                for component in ("haproxy", "proxysql", "pxc")
                if status.get(component)
            ]
            summary.operation = common.operation_from_pairs(pairs, ";".join(status.get("message") or []))
        return summary

    # Create

    async def create_cluster(self, request: CreatePXCClusterRequest) -> None:
        """
        Create the cluster secret and custom resource.

        Raises:
            ValidationError: proxy definition is invalid
            ConflictError: a cluster with the same name exists
            PreconditionFailedError: the XtraDB operator is not installed
        """
        request.validate_request()
        name = request.name

        try:
            await self.get_cluster(name)
        except KubectlNotFoundError:
            pass
        else:
            raise ConflictError(f"Cluster '{name}' already exists", details={"name": name})

        operators = await self.client.check_operators()
        if not operators.pxc_operator_version:
            raise PreconditionFailedError("XtraDB operator is not installed")

        cluster_type = await self.client.get_cluster_type()
        template = common.load_cr_template(settings.pxc_cr_template_path)
        if template is not None:
            cr = self._override_template(template, request, operators.pxc_operator_version, cluster_type)
        else:
            cr = self.build_default_spec(request, operators.pxc_operator_version, cluster_type)

        data = await build_secret_data(
            self.client, settings.pxc_template_secret_name, PXC_ADMIN_PASSWORD_KEY, generate_pxc_passwords()
        )
        if request.pmm is not None:
            data["pmmserver"] = request.pmm.password

        await self.client.create_secret(cr["spec"]["secretsName"], data)
        await self.client.apply(cr)
        logger.info(
            "pxc_cluster_created",
            name=name,
            operator_version=operators.pxc_operator_version,
            cluster_type=cluster_type.value,
        )

    def build_default_spec(
        self,
        request: CreatePXCClusterRequest,
        operator_version: str,
        cluster_type: KubernetesClusterType,
    ) -> Dict[str, Any]:
        """Complete PerconaXtraDBCluster resource from built-in defaults."""
        params = request.params
        name = request.name
        topology_key = common.affinity_topology_key(cluster_type)
        service_type = common.expose_service_type(cluster_type, request.expose)

        pxc = {
            "size": params.cluster_size,
            "resources": common.resources_limits(params.pxc.compute_resources),
            "image": params.pxc.image or DEFAULT_PXC_IMAGE,
            "imagePullPolicy": common.PULL_POLICY_IF_NOT_PRESENT,
            "volumeSpec": common.volume_spec(params.pxc.disk_size),
            "affinity": {"antiAffinityTopologyKey": topology_key},
            "podDisruptionBudget": {"maxUnavailable": 1},
        }

        spec: Dict[str, Any] = {
            "updateStrategy": common.UPDATE_STRATEGY_ROLLING,
            "crVersion": operator_version,
            "allowUnsafeConfigurations": True,
            "secretsName": secret_name(name),
            "pxc": pxc,
            "pmm": common.pmm_spec(request.pmm, settings.pmm_client_image),
            "backup": backup_spec(name, operator_version, params.pxc.disk_size),
        }

        if params.proxysql is not None:
            spec["proxysql"] = {
                "enabled": True,
                "size": params.cluster_size,
                "image": params.proxysql.image or default_proxysql_image(operator_version),
                "imagePullPolicy": common.PULL_POLICY_IF_NOT_PRESENT,
                "affinity": {"antiAffinityTopologyKey": topology_key},
                "serviceType": service_type,
                "resources": common.resources_limits(params.proxysql.compute_resources),
                "volumeSpec": common.volume_spec(params.proxysql.disk_size),
            }
        else:
            spec["haproxy"] = {
                "enabled": True,
                "size": params.cluster_size,
                "image": params.haproxy.image or default_haproxy_image(operator_version),
                "imagePullPolicy": common.PULL_POLICY_IF_NOT_PRESENT,
                "affinity": {"antiAffinityTopologyKey": topology_key},
                "serviceType": service_type,
                "resources": common.resources_limits(params.haproxy.compute_resources),
            }

        if params.version_service_url:
            spec["upgradeOptions"] = {
                "versionServiceEndpoint": params.version_service_url,
                "apply": "disabled",
            }

        return {
            "apiVersion": common.api_version(PXC_API_GROUP, operator_version),
            "kind": PXC_KIND,
            "metadata": {"name": name, "finalizers": list(FINALIZERS)},
            "spec": spec,
        }

    def _override_template(
        self,
        template: Dict[str, Any],
        request: CreatePXCClusterRequest,
        operator_version: str,
        cluster_type: KubernetesClusterType,
    ) -> Dict[str, Any]:
        """Apply request parameters on top of a CR template."""
        params = request.params
        name = request.name
        cr = copy.deepcopy(template)

        cr.setdefault("apiVersion", common.api_version(PXC_API_GROUP, operator_version))
        cr.setdefault("kind", PXC_KIND)
        metadata = cr.get("metadata") or {}
        metadata["name"] = name
        cr["metadata"] = metadata

        spec = cr.get("spec") or {}
        cr["spec"] = spec
        spec.setdefault("crVersion", operator_version)
        if not spec.get("secretsName"):
            spec["secretsName"] = secret_name(name)

        pxc = spec.get("pxc") or {}
        spec["pxc"] = pxc
        pxc["size"] = params.cluster_size
        if params.pxc.image:
            pxc["image"] = params.pxc.image
        elif not pxc.get("image"):
            pxc["image"] = DEFAULT_PXC_IMAGE
        if params.pxc.compute_resources is not None:
            pxc["resources"] = common.resources_limits(params.pxc.compute_resources)
        common.set_volume_size(pxc, params.pxc.disk_size)
        if not request.expose:
            pxc["expose"] = {"enabled": False}

        backup = spec.get("backup")
        if not backup:
            backup = backup_spec(name, operator_version, params.pxc.disk_size)
            spec["backup"] = backup
        if not backup.get("image"):
            backup["image"] = default_backup_image(operator_version)
        if not backup.get("storages"):
            backup["storages"] = backup_storages(name, params.pxc.disk_size)

        service_type = common.expose_service_type(cluster_type, request.expose)
        if params.proxysql is not None:
            proxysql = spec.get("proxysql") or {}
            spec["proxysql"] = proxysql
            proxysql["enabled"] = True
            proxysql["size"] = params.cluster_size
            proxysql["serviceType"] = service_type
            if params.proxysql.image:
                proxysql["image"] = params.proxysql.image
            elif not proxysql.get("image"):
                proxysql["image"] = default_proxysql_image(operator_version)
            if params.proxysql.compute_resources is not None:
                proxysql["resources"] = common.resources_limits(params.proxysql.compute_resources)
            common.set_volume_size(proxysql, params.proxysql.disk_size)
            if spec.get("haproxy"):
                spec["haproxy"]["enabled"] = False
        else:
            haproxy = spec.get("haproxy") or {}
            spec["haproxy"] = haproxy
            haproxy["enabled"] = True
            haproxy["size"] = params.cluster_size
            haproxy["serviceType"] = service_type
            if params.haproxy.image:
                haproxy["image"] = params.haproxy.image
            elif not haproxy.get("image"):
                haproxy["image"] = default_haproxy_image(operator_version)
            if params.haproxy.compute_resources is not None:
                haproxy["resources"] = common.resources_limits(params.haproxy.compute_resources)
            if spec.get("proxysql"):
                spec["proxysql"]["enabled"] = False

        spec["pmm"] = common.pmm_spec(request.pmm, settings.pmm_client_image)
        if params.version_service_url:
            upgrade = spec.get("upgradeOptions") or {}
            upgrade["versionServiceEndpoint"] = params.version_service_url
            upgrade.setdefault("apply", "disabled")
            spec["upgradeOptions"] = upgrade
        return cr

    # Update

    async def update_cluster(self, request: UpdatePXCClusterRequest) -> None:
        """
        Change size, resources, image or the paused flag of a cluster.

        Resume is applied on its own. Every other change requires the
        cluster to be ready.
        """
        request.validate_request()
        params = request.params
        name = request.name

        cluster = await self.get_cluster(name)
        spec = cluster.setdefault("spec", {})
        pxc = spec.setdefault("pxc", {})
        state = await common.derive_state(self.client, cluster, PXC_CONTAINER, pxc.get("image") or "")

        if params.resume:
            if state != ClusterState.PAUSED:
                raise ClusterNotReadyError(name, state.value, f"Cluster '{name}' is not paused")
            spec["pause"] = False
            await self.client.apply(cluster)
            logger.info("pxc_cluster_resumed", name=name)
            return

        if state != ClusterState.READY:
            raise ClusterNotReadyError(name, state.value)

        if params.suspend:
            spec["pause"] = True

        proxy_key = "proxysql" if (spec.get("proxysql") or {}).get("enabled") else "haproxy"
        proxy = spec.get(proxy_key) or {}

        if params.cluster_size is not None:
            pxc["size"] = params.cluster_size
            if proxy:
                proxy["size"] = params.cluster_size

        if params.pxc is not None:
            common.update_resources(pxc, params.pxc.compute_resources)
            if params.pxc.image and params.pxc.image != pxc.get("image"):
                common.validate_image(pxc.get("image") or "", params.pxc.image)
                pxc["image"] = params.pxc.image

        proxy_update = params.proxysql if params.proxysql is not None else params.haproxy
        if proxy_update is not None:
            if not proxy:
                raise ValidationError(
                    "cluster has no proxy to update",
                    details={"name": name},
                )
            common.update_resources(proxy, proxy_update.compute_resources)

        await self.client.apply(cluster)
        logger.info("pxc_cluster_updated", name=name, suspend=params.suspend, size=params.cluster_size)

    # Delete

    async def delete_cluster(self, name: str) -> None:
        resource = {
            "apiVersion": f"{PXC_API_GROUP}/v1",
            "kind": PXC_KIND,
            "metadata": {"name": name},
        }
        try:
            await self.client.delete(resource)
        except KubectlNotFoundError as e:
            raise NotFoundError("XtraDB cluster", name) from e
        except KubectlError as e:
            raise KubectlError("cannot delete PXC cluster", cmd=e.cmd, stderr=e.stderr) from e

        await delete_secrets_best_effort(
            self.client, name, [secret_name(name), internal_secret_name(name)]
        )
        logger.info("pxc_cluster_deleted", name=name)

    # Restart

    async def restart_cluster(self, name: str) -> None:
        try:
            await self.get_cluster(name)
        except KubectlNotFoundError as e:
            raise NotFoundError("XtraDB cluster", name) from e

        await self.client.restart_statefulset(f"{name}-pxc")
        for proxy in ("proxysql", "haproxy"):
            if await self.client.restart_statefulset_if_exists(f"{name}-{proxy}"):
                break
        logger.info("pxc_cluster_restarted", name=name)

    # Credentials

    async def get_credentials(self, name: str) -> PXCCredentials:
        """Root credentials of a ready or changing cluster."""
        try:
            cluster = await self.get_cluster(name)
        except KubectlNotFoundError as e:
            raise NotFoundError("XtraDB cluster", name) from e

        pxc = (cluster.get("spec") or {}).get("pxc") or {}
        state = await common.derive_state(self.client, cluster, PXC_CONTAINER, pxc.get("image") or "")
        if state not in (ClusterState.READY, ClusterState.CHANGING):
            raise ClusterNotReadyError(name, state.value)

        secrets_name = (cluster.get("spec") or {}).get("secretsName") or secret_name(name)
        try:
            secret = await self.client.get_secret(secrets_name)
        except KubectlNotFoundError as e:
            raise NotFoundError("Secret", secrets_name) from e

        password: Optional[str] = secret.get(PXC_ADMIN_PASSWORD_KEY)
        if password is None:
            raise NotFoundError("Secret key", f"{secrets_name}/{PXC_ADMIN_PASSWORD_KEY}")

        return PXCCredentials(
            username=PXC_USERNAME,
            password=password,
            host=(cluster.get("status") or {}).get("host") or "",
            port=PXC_PORT,
        )
