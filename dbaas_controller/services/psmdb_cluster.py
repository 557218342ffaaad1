"""
Percona Server for MongoDB (PSMDB) replica set translator.

Turns API requests into PerconaServerMongoDB custom resources and reads
cluster state back from them.
"""
import copy
from typing import Any, Dict, List, Set

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
)
from dbaas_controller.models.cluster import (
    CreatePSMDBClusterRequest,
    PSMDBClusterSummary,
    PSMDBCredentials,
    PSMDBParamsView,
    ReplicasetView,
    UpdatePSMDBClusterRequest,
)
from dbaas_controller.services import cluster_common as common
from dbaas_controller.services.credentials import (
    PSMDB_ADMIN_PASSWORD_KEY,
    PSMDB_ADMIN_USER_KEY,
    build_secret_data,
    delete_secrets_best_effort,
    generate_psmdb_passwords,
)
from dbaas_controller.services.deletion_tracker import PSMDB_OPERATOR_DEPLOYMENT, find_deleting_clusters
from dbaas_controller.services.kube_client import PSMDB_API_GROUP, KubeClient, KubernetesClusterType

logger = get_logger(__name__)

PSMDB_KIND = "PerconaServerMongoDB"
PSMDB_RESOURCE = "perconaservermongodbs"
PSMDB_CONTAINER = "mongod"
PSMDB_PORT = 27017
REPLSET_NAME = "rs0"

DEFAULT_PSMDB_IMAGE = "percona/percona-server-mongodb:4.2.8-8"
OPERATOR_IMAGE = "percona/percona-server-mongodb-operator"
OPERATOR_SERVICE_ACCOUNT = "percona-server-mongodb-operator"

FINALIZERS = ["delete-psmdb-pvc"]

REPLSET_CONFIGURATION = "      operationProfiling:\n        mode: slowOp\n"


def secret_name(cluster_name: str) -> str:
    return f"dbaas-{cluster_name}-psmdb-secrets"


def internal_secret_names(cluster_name: str) -> List[str]:
    """Secrets created by the operator itself for a cluster."""
    return [
        f"internal-{cluster_name}-users",
        f"{cluster_name}-ssl",
        f"{cluster_name}-ssl-internal",
        f"{cluster_name}-mongodb-keyfile",
        f"{cluster_name}-mongodb-encryption-key",
    ]


def default_backup_image(operator_version: str) -> str:
    return f"{OPERATOR_IMAGE}:{operator_version}-backup"


def mongod_spec(cluster_name: str) -> Dict[str, Any]:
    return {
        "net": {"port": PSMDB_PORT},
        "operationProfiling": {
            "mode": "slowOp",
            "slowOpThresholdMs": 100,
            "rateLimit": 100,
        },
        "security": {
            "redactClientLogData": False,
            "enableEncryption": True,
            "encryptionKeySecret": f"{cluster_name}-mongodb-encryption-key",
            "encryptionCipherMode": "AES256-CBC",
        },
        "setParameter": {"ttlMonitorSleepSecs": 60},
        "storage": {
            "engine": "wiredTiger",
            "mmapv1": {"nsSize": 16, "smallfiles": False},
            "wiredTiger": {
                "collectionConfig": {"blockCompressor": "snappy"},
                "engineConfig": {"directoryForIndexes": False, "journalCompressor": "snappy"},
                "indexConfig": {"prefixCompression": True},
            },
        },
    }


class PSMDBClusterService:
    """PSMDB replica set operations against one Kubernetes cluster."""

    def __init__(self, client: KubeClient):
        self.client = client

    async def get_cluster(self, name: str) -> Dict[str, Any]:
        return await self.client.get_object(PSMDB_RESOURCE, name)

    async def _state(self, cluster: Dict[str, Any]) -> ClusterState:
        replsets = ((cluster.get("status") or {}).get("replsets") or {}).values()
        return await common.derive_state(
            self.client,
            cluster,
            PSMDB_CONTAINER,
            (cluster.get("spec") or {}).get("image") or "",
            [(rs or {}).get("status") or "" for rs in replsets],
        )

    # List

    async def list_clusters(self) -> List[PSMDBClusterSummary]:
        items = await self.client.list_objects(PSMDB_RESOURCE)

        clusters = []
        running: Set[str] = set()
        for item in items:
            clusters.append(await self._summary(item))
            running.add(item["metadata"]["name"])

        for name in await find_deleting_clusters(self.client, PSMDB_OPERATOR_DEPLOYMENT, running):
            clusters.append(PSMDBClusterSummary(name=name, state=ClusterState.DELETING))

        logger.debug("listed_psmdb_clusters", count=len(clusters))
        return clusters

    async def _summary(self, item: Dict[str, Any]) -> PSMDBClusterSummary:
        name = item["metadata"]["name"]
        spec = item.get("spec") or {}
        status = item.get("status") or {}
        replsets = spec.get("replsets") or [{}]
        replset = replsets[0] or {}
        mongos = (spec.get("sharding") or {}).get("mongos") or {}
        expose_type = (mongos.get("expose") or {}).get("exposeType") or common.SERVICE_TYPE_CLUSTER_IP

        summary = PSMDBClusterSummary(
            name=name,
            state=await self._state(item),
            params=PSMDBParamsView(
                cluster_size=int(replset.get("size") or 0),
                image=spec.get("image") or "",
                replicaset=ReplicasetView(
                    disk_size=common.disk_size_from_spec(replset),
                    compute_resources=common.compute_resources_from_spec(replset),
                ),
            ),
            exposed=expose_type != common.SERVICE_TYPE_CLUSTER_IP,
            paused=bool(spec.get("pause")),
        )

        conditions = status.get("conditions") or []
        if conditions:
            message = status.get("message") or (conditions[-1] or {}).get("message") or ""
            pairs = [common.component_pair(rs or {}) for rs in (status.get("replsets") or {}).values()]
            # single-member clusters run without sharding
            if int(replset.get("size") or 0) != 1:
                pairs.append(common.component_pair(status.get("mongos") or {}))
            summary.operation = common.operation_from_pairs(pairs, message)
        return summary

    # Create

    async def create_cluster(self, request: CreatePSMDBClusterRequest) -> None:
        """
        Create the cluster secret and custom resource.

        Raises:
            ConflictError: a cluster with the same name exists
            PreconditionFailedError: the PSMDB operator is not installed
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
        if not operators.psmdb_operator_version:
            raise PreconditionFailedError("PSMDB operator is not installed")

        cluster_type = await self.client.get_cluster_type()
        template = common.load_cr_template(settings.psmdb_cr_template_path)
        if template is not None:
            cr = self._override_template(template, request, operators.psmdb_operator_version, cluster_type)
        else:
            cr = self.build_default_spec(request, operators.psmdb_operator_version, cluster_type)

        data = await build_secret_data(
            self.client, settings.psmdb_template_secret_name, PSMDB_ADMIN_PASSWORD_KEY, generate_psmdb_passwords()
        )
        if request.pmm is not None:
            data["PMM_SERVER_USER"] = request.pmm.login
            data["PMM_SERVER_PASSWORD"] = request.pmm.password

        await self.client.create_secret(cr["spec"]["secrets"]["users"], data)
        await self.client.apply(cr)
        logger.info(
            "psmdb_cluster_created",
            name=name,
            operator_version=operators.psmdb_operator_version,
            cluster_type=cluster_type.value,
        )

    @staticmethod
    def _expose(cluster_type: KubernetesClusterType, expose: bool) -> Dict[str, Any]:
        if not expose:
            return {"enabled": False, "exposeType": common.SERVICE_TYPE_CLUSTER_IP}
        return {"enabled": True, "exposeType": common.expose_service_type(cluster_type, expose)}

    def build_default_spec(
        self,
        request: CreatePSMDBClusterRequest,
        operator_version: str,
        cluster_type: KubernetesClusterType,
    ) -> Dict[str, Any]:
        """Complete PerconaServerMongoDB resource from built-in defaults."""
        params = request.params
        name = request.name
        affinity = {"antiAffinityTopologyKey": common.affinity_topology_key(cluster_type)}
        expose = self._expose(cluster_type, request.expose)
        resources = common.resources_limits(params.replicaset.compute_resources)

        def arbiter() -> Dict[str, Any]:
            return {"enabled": False, "size": 1, "affinity": dict(affinity)}

        spec: Dict[str, Any] = {
            "updateStrategy": common.UPDATE_STRATEGY_ROLLING,
            "crVersion": operator_version,
            "image": params.image or DEFAULT_PSMDB_IMAGE,
            "secrets": {"users": secret_name(name)},
            "sharding": {
                "enabled": True,
                "configsvrReplSet": {
                    "size": params.cluster_size,
                    "volumeSpec": common.volume_spec(params.replicaset.disk_size),
                    "arbiter": arbiter(),
                    "affinity": dict(affinity),
                },
                "mongos": {
                    "size": params.cluster_size,
                    "affinity": dict(affinity),
                    "expose": {"exposeType": expose["exposeType"]},
                    "resources": copy.deepcopy(resources),
                },
            },
            "replsets": [
                {
                    "name": REPLSET_NAME,
                    "size": params.cluster_size,
                    "arbiter": arbiter(),
                    "volumeSpec": common.volume_spec(params.replicaset.disk_size),
                    "podDisruptionBudget": {"maxUnavailable": 1},
                    "affinity": dict(affinity),
                    "resources": copy.deepcopy(resources),
                    "configuration": REPLSET_CONFIGURATION,
                }
            ],
            "pmm": {"enabled": False},
            "mongod": mongod_spec(name),
            "backup": {
                "enabled": True,
                "image": params.backup_image or default_backup_image(operator_version),
                "serviceAccountName": OPERATOR_SERVICE_ACCOUNT,
            },
        }

        if params.cluster_size == 1:
            # a single member cannot run the sharded topology
            spec["allowUnsafeConfigurations"] = True
            spec["sharding"]["enabled"] = False
            if request.expose:
                spec["replsets"][0]["expose"] = expose
                spec["sharding"]["mongos"]["expose"]["exposeType"] = common.SERVICE_TYPE_CLUSTER_IP

        if request.pmm is not None:
            spec["pmm"] = {
                "enabled": True,
                "serverHost": request.pmm.public_address,
                "image": settings.pmm_client_image,
                "resources": {"requests": dict(common.PMM_REQUESTS)},
            }

        if params.version_service_url:
            spec["upgradeOptions"] = {
                "versionServiceEndpoint": params.version_service_url,
                "apply": "disabled",
            }

        return {
            "apiVersion": common.api_version(PSMDB_API_GROUP, operator_version),
            "kind": PSMDB_KIND,
            "metadata": {"name": name, "finalizers": list(FINALIZERS)},
            "spec": spec,
        }

    def _override_template(
        self,
        template: Dict[str, Any],
        request: CreatePSMDBClusterRequest,
        operator_version: str,
        cluster_type: KubernetesClusterType,
    ) -> Dict[str, Any]:
        """Apply request parameters on top of a CR template."""
        params = request.params
        name = request.name
        cr = copy.deepcopy(template)

        cr.setdefault("apiVersion", common.api_version(PSMDB_API_GROUP, operator_version))
        cr.setdefault("kind", PSMDB_KIND)
        metadata = cr.get("metadata") or {}
        metadata["name"] = name
        cr["metadata"] = metadata

        spec = cr.get("spec") or {}
        cr["spec"] = spec
        spec.setdefault("crVersion", operator_version)
        if params.image:
            spec["image"] = params.image
        elif not spec.get("image"):
            spec["image"] = DEFAULT_PSMDB_IMAGE

        secrets = spec.get("secrets") or {}
        spec["secrets"] = secrets
        if not secrets.get("users"):
            secrets["users"] = secret_name(name)

        replsets = spec.get("replsets") or [{"name": REPLSET_NAME}]
        spec["replsets"] = replsets
        replset = replsets[0]
        replset["size"] = params.cluster_size
        if params.replicaset.compute_resources is not None:
            replset["resources"] = common.resources_limits(params.replicaset.compute_resources)
        common.set_volume_size(replset, params.replicaset.disk_size)

        expose = self._expose(cluster_type, request.expose)
        sharding = spec.get("sharding") or {}
        spec["sharding"] = sharding
        mongos = sharding.get("mongos") or {}
        sharding["mongos"] = mongos
        mongos["expose"] = {"exposeType": expose["exposeType"]}
        if params.cluster_size == 1:
            spec["allowUnsafeConfigurations"] = True
            sharding["enabled"] = False
            if request.expose:
                replset["expose"] = expose
                mongos["expose"]["exposeType"] = common.SERVICE_TYPE_CLUSTER_IP

        backup = spec.get("backup") or {}
        spec["backup"] = backup
        if params.backup_image:
            backup["image"] = params.backup_image
        elif not backup.get("image"):
            backup["image"] = default_backup_image(operator_version)

        if request.pmm is not None:
            spec["pmm"] = {
                "enabled": True,
                "serverHost": request.pmm.public_address,
                "image": settings.pmm_client_image,
                "resources": {"requests": dict(common.PMM_REQUESTS)},
            }
        if params.version_service_url:
            upgrade = spec.get("upgradeOptions") or {}
            upgrade["versionServiceEndpoint"] = params.version_service_url
            upgrade.setdefault("apply", "disabled")
            spec["upgradeOptions"] = upgrade
        return cr

    # Update

    async def update_cluster(self, request: UpdatePSMDBClusterRequest) -> None:
        """
        Change size, resources, image or the paused flag of a replica set.

        Resume is applied on its own. Every other change requires the
        cluster to be ready.
        """
        request.validate_request()
        params = request.params
        name = request.name

        cluster = await self.get_cluster(name)
        spec = cluster.setdefault("spec", {})
        state = await self._state(cluster)

        if params.resume:
            if state != ClusterState.PAUSED:
                raise ClusterNotReadyError(name, state.value, f"Cluster '{name}' is not paused")
            spec["pause"] = False
            await self.client.apply(cluster)
            logger.info("psmdb_cluster_resumed", name=name)
            return

        if state != ClusterState.READY:
            raise ClusterNotReadyError(name, state.value)

        if params.suspend:
            spec["pause"] = True

        replsets = spec.get("replsets") or [{"name": REPLSET_NAME}]
        spec["replsets"] = replsets
        replset = replsets[0]

        if params.cluster_size is not None:
            replset["size"] = params.cluster_size

        if params.replicaset is not None:
            common.update_resources(replset, params.replicaset.compute_resources)

        if params.image and params.image != spec.get("image"):
            common.validate_image(spec.get("image") or "", params.image)
            spec["image"] = params.image

        await self.client.apply(cluster)
        logger.info("psmdb_cluster_updated", name=name, suspend=params.suspend, size=params.cluster_size)

    # Delete

    async def delete_cluster(self, name: str) -> None:
        resource = {
            "apiVersion": f"{PSMDB_API_GROUP}/v1",
            "kind": PSMDB_KIND,
            "metadata": {"name": name},
        }
        try:
            await self.client.delete(resource)
        except KubectlNotFoundError as e:
            raise NotFoundError("PSMDB cluster", name) from e
        except KubectlError as e:
            raise KubectlError("cannot delete PSMDB cluster", cmd=e.cmd, stderr=e.stderr) from e

        await delete_secrets_best_effort(
            self.client, name, [secret_name(name)] + internal_secret_names(name)
        )
        logger.info("psmdb_cluster_deleted", name=name)

    # Restart

    async def restart_cluster(self, name: str) -> None:
        try:
            await self.get_cluster(name)
        except KubectlNotFoundError as e:
            raise NotFoundError("PSMDB cluster", name) from e

        await self.client.restart_statefulset_if_exists(f"{name}-{REPLSET_NAME}")
        logger.info("psmdb_cluster_restarted", name=name)

    # Credentials

    async def get_credentials(self, name: str) -> PSMDBCredentials:
        """User admin credentials of a ready replica set."""
        try:
            cluster = await self.get_cluster(name)
        except KubectlNotFoundError as e:
            raise NotFoundError("PSMDB cluster", name) from e

        state = await self._state(cluster)
        if state != ClusterState.READY:
            raise ClusterNotReadyError(name, state.value)

        secrets_name = ((cluster.get("spec") or {}).get("secrets") or {}).get("users") or secret_name(name)
        try:
            secret = await self.client.get_secret(secrets_name)
        except KubectlNotFoundError as e:
            raise NotFoundError("Secret", secrets_name) from e

        for key in (PSMDB_ADMIN_USER_KEY, PSMDB_ADMIN_PASSWORD_KEY):
            if key not in secret:
                raise NotFoundError("Secret key", f"{secrets_name}/{key}")

        return PSMDBCredentials(
            username=secret[PSMDB_ADMIN_USER_KEY],
            password=secret[PSMDB_ADMIN_PASSWORD_KEY],
            host=(cluster.get("status") or {}).get("host") or "",
            port=PSMDB_PORT,
            replicaset=REPLSET_NAME,
        )
