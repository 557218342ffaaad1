"""
Tests for the XtraDB cluster translator.
"""
import pytest

from dbaas_controller.config.settings import settings
from dbaas_controller.core.cluster_state import ClusterState
from dbaas_controller.exceptions import (
    ClusterNotReadyError,
    ConflictError,
    KubectlNotFoundError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)
from dbaas_controller.models.cluster import CreatePXCClusterRequest, UpdatePXCClusterRequest
from dbaas_controller.services.credentials import PXC_SECRET_KEYS
from dbaas_controller.services.pxc_cluster import PXC_RESOURCE, PXCClusterService

GIB = 1024 ** 3
KUBE_AUTH = {"kubeconfig": "{}"}


def create_request(**overrides) -> CreatePXCClusterRequest:
    data = {
        "kube_auth": KUBE_AUTH,
        "name": "c1",
        "params": {
            "cluster_size": 1,
            "pxc": {
                "compute_resources": {"cpu_m": 200, "memory_bytes": GIB},
                "disk_size": 10 * GIB,
            },
            "proxysql": {
                "compute_resources": {"cpu_m": 100, "memory_bytes": 500000000},
                "disk_size": GIB,
            },
        },
    }
    data.update(overrides)
    return CreatePXCClusterRequest(**data)


def update_request(name: str = "c1", **params) -> UpdatePXCClusterRequest:
    return UpdatePXCClusterRequest(kube_auth=KUBE_AUTH, name=name, params=params)


# List


@pytest.mark.asyncio
async def test_list_projects_ready_cluster(fake_kubectl, kube_client, pxc_cr):
    fake_kubectl.add(pxc_cr("c1"))

    clusters = await PXCClusterService(kube_client).list_clusters()

    assert len(clusters) == 1
    cluster = clusters[0]
    assert cluster.name == "c1"
    assert cluster.state == ClusterState.READY
    assert cluster.params.cluster_size == 3
    assert cluster.params.pxc.disk_size == 10 * GIB
    assert cluster.params.pxc.compute_resources.cpu_m == 1000
    assert cluster.params.pxc.compute_resources.memory_bytes == 2 * GIB
    assert cluster.params.proxysql.disk_size == GIB
    assert cluster.params.proxysql.compute_resources.cpu_m == 500
    assert cluster.params.proxysql.compute_resources.memory_bytes == 1000000000
    assert cluster.params.haproxy is None
    assert cluster.exposed is False
    assert cluster.paused is False
    assert cluster.operation.finished_steps == 5
    assert cluster.operation.total_steps == 6
    assert cluster.operation.message == "pxc: waiting;proxy: waiting"


@pytest.mark.asyncio
async def test_list_without_limits_reports_unset_resources(fake_kubectl, kube_client, pxc_cr):
    cr = pxc_cr("c1", proxy="haproxy", conditions=False)
    del cr["spec"]["pxc"]["resources"]
    del cr["spec"]["pxc"]["volumeSpec"]
    fake_kubectl.add(cr)

    cluster = (await PXCClusterService(kube_client).list_clusters())[0]

    assert cluster.params.pxc.compute_resources is None
    assert cluster.params.pxc.disk_size == 0
    assert cluster.params.haproxy.compute_resources.cpu_m == 500
    assert cluster.operation.total_steps == 0


@pytest.mark.asyncio
async def test_list_detects_upgrade(fake_kubectl, kube_client, pxc_cr, pod):
    fake_kubectl.add(pxc_cr("c1", state="initializing", image="percona/percona-xtradb-cluster:8.0.25-15.1"))
    fake_kubectl.add(pod("c1-pxc-0", "c1", containers={"pxc": "percona/percona-xtradb-cluster:8.0.20-11.1"}))

    cluster = (await PXCClusterService(kube_client).list_clusters())[0]

    assert cluster.state == ClusterState.UPGRADING


@pytest.mark.asyncio
async def test_list_changing_when_pods_run_cr_image(fake_kubectl, kube_client, pxc_cr, pod):
    fake_kubectl.add(pxc_cr("c1", state="initializing"))
    fake_kubectl.add(pod("c1-pxc-0", "c1"))

    cluster = (await PXCClusterService(kube_client).list_clusters())[0]

    assert cluster.state == ClusterState.CHANGING


@pytest.mark.asyncio
async def test_list_paused_cluster(fake_kubectl, kube_client, pxc_cr):
    fake_kubectl.add(pxc_cr("c1", state="ready", pause=True))

    cluster = (await PXCClusterService(kube_client).list_clusters())[0]

    assert cluster.state == ClusterState.PAUSED
    assert cluster.paused is True


@pytest.mark.asyncio
async def test_list_reports_deleting_cluster_once(fake_kubectl, kube_client, pxc_cr, pod):
    fake_kubectl.add(pxc_cr("c1"))
    fake_kubectl.add(pod("c1-pxc-0", "c1"))
    fake_kubectl.add(pod("gone-pxc-0", "gone"))
    fake_kubectl.add(pod("gone-pxc-1", "gone"))
    fake_kubectl.add(pod("mongo-rs0-0", "mongo", managed_by="percona-server-mongodb-operator"))

    clusters = await PXCClusterService(kube_client).list_clusters()

    assert [c.name for c in clusters] == ["c1", "gone"]
    deleting = clusters[1]
    assert deleting.state == ClusterState.DELETING
    assert deleting.params.cluster_size == 0


# Create


@pytest.mark.asyncio
async def test_create_builds_default_resource(fake_kubectl, kube_client):
    await PXCClusterService(kube_client).create_cluster(create_request())

    applied = fake_kubectl.applied()
    assert [obj["kind"] for obj in applied] == ["Secret", "PerconaXtraDBCluster"]

    cr = fake_kubectl.stored(PXC_RESOURCE, "c1")
    assert cr["apiVersion"] == "pxc.percona.com/v1-11-0"
    assert cr["metadata"]["finalizers"] == ["delete-proxysql-pvc", "delete-pxc-pvc"]

    spec = cr["spec"]
    assert spec["crVersion"] == "1.11.0"
    assert spec["secretsName"] == "dbaas-c1-pxc-secrets"
    assert spec["allowUnsafeConfigurations"] is True
    assert spec["pxc"]["size"] == 1
    assert spec["pxc"]["image"] == "percona/percona-xtradb-cluster:8.0.20-11.1"
    assert spec["pxc"]["resources"] == {"limits": {"cpu": "200m", "memory": str(GIB)}}
    assert spec["pxc"]["volumeSpec"]["persistentVolumeClaim"]["resources"]["requests"]["storage"] == str(10 * GIB)
    assert spec["pxc"]["affinity"] == {"antiAffinityTopologyKey": "kubernetes.io/hostname"}
    assert spec["proxysql"]["image"] == "percona/percona-xtradb-cluster-operator:1.11.0-proxysql"
    assert spec["proxysql"]["serviceType"] == "ClusterIP"
    assert spec["proxysql"]["resources"] == {"limits": {"cpu": "100m", "memory": "500000000"}}
    assert "haproxy" not in spec
    assert spec["pmm"] == {"enabled": False}
    assert spec["backup"]["image"] == "percona/percona-xtradb-cluster-operator:1.11.0-pxc8.0-backup"
    assert spec["backup"]["schedule"][0]["storageName"] == "pxc-backup-storage-c1"
    assert "pxc-backup-storage-c1" in spec["backup"]["storages"]
    assert "upgradeOptions" not in spec

    secret = await kube_client.get_secret("dbaas-c1-pxc-secrets")
    assert set(secret) == set(PXC_SECRET_KEYS)
    assert len(secret["root"]) == 24


@pytest.mark.asyncio
async def test_create_exposed_on_minikube(fake_kubectl, kube_client):
    fake_kubectl.add({
        "apiVersion": "storage.k8s.io/v1",
        "kind": "StorageClass",
        "metadata": {"name": "gp2"},
        "provisioner": "k8s.io/minikube-hostpath",
    })

    await PXCClusterService(kube_client).create_cluster(create_request(expose=True))

    spec = fake_kubectl.stored(PXC_RESOURCE, "c1")["spec"]
    assert spec["proxysql"]["serviceType"] == "NodePort"
    assert spec["pxc"]["affinity"] == {"antiAffinityTopologyKey": "none"}


@pytest.mark.asyncio
async def test_create_with_haproxy_pmm_and_version_service(fake_kubectl, kube_client):
    request = create_request(
        params={
            "cluster_size": 3,
            "pxc": {"disk_size": GIB},
            "haproxy": {"compute_resources": {"cpu_m": 100, "memory_bytes": 0}},
            "version_service_url": "https://check.percona.com",
        },
        pmm={"public_address": "pmm.example.com", "login": "admin", "password": "pmm-secret"},
        expose=True,
    )

    await PXCClusterService(kube_client).create_cluster(request)

    spec = fake_kubectl.stored(PXC_RESOURCE, "c1")["spec"]
    assert "proxysql" not in spec
    assert spec["haproxy"]["size"] == 3
    assert spec["haproxy"]["serviceType"] == "LoadBalancer"
    assert spec["haproxy"]["resources"] == {"limits": {"cpu": "100m"}}
    assert spec["pxc"]["resources"] == {}
    assert spec["pmm"]["enabled"] is True
    assert spec["pmm"]["serverHost"] == "pmm.example.com"
    assert spec["pmm"]["serverUser"] == "admin"
    assert spec["pmm"]["image"] == settings.pmm_client_image
    assert spec["upgradeOptions"] == {
        "versionServiceEndpoint": "https://check.percona.com",
        "apply": "disabled",
    }

    secret = await kube_client.get_secret("dbaas-c1-pxc-secrets")
    assert secret["pmmserver"] == "pmm-secret"


@pytest.mark.asyncio
async def test_create_rejects_duplicate_name(fake_kubectl, kube_client, pxc_cr):
    existing = fake_kubectl.add(pxc_cr("c1"))

    with pytest.raises(ConflictError) as exc_info:
        await PXCClusterService(kube_client).create_cluster(create_request())

    assert "c1" in exc_info.value.message
    assert fake_kubectl.applied() == []
    assert fake_kubectl.stored(PXC_RESOURCE, "c1") == existing


@pytest.mark.asyncio
@pytest.mark.parametrize("proxies", [{}, {"proxysql": {}, "haproxy": {}}])
async def test_create_requires_exactly_one_proxy(fake_kubectl, kube_client, proxies):
    params = {"cluster_size": 1, "pxc": {"disk_size": GIB}}
    params.update(proxies)

    with pytest.raises(ValidationError):
        await PXCClusterService(kube_client).create_cluster(create_request(params=params))

    assert fake_kubectl.calls == []


@pytest.mark.asyncio
async def test_create_requires_operator(fake_kubectl, kube_client):
    fake_kubectl.api_versions = ["v1", "apps/v1"]

    with pytest.raises(PreconditionFailedError):
        await PXCClusterService(kube_client).create_cluster(create_request())

    assert fake_kubectl.applied() == []


@pytest.mark.asyncio
async def test_create_from_template(fake_kubectl, kube_client, tmp_path, monkeypatch):
    template = tmp_path / "pxc.cr.yml"
    template.write_text(
        "apiVersion: pxc.percona.com/v1-11-0\n"
        "kind: PerconaXtraDBCluster\n"
        "metadata:\n"
        "  name: template\n"
        "spec:\n"
        "  secretsName: my-secrets\n"
        "  pxc:\n"
        "    size: 3\n"
        "    image: percona/percona-xtradb-cluster:8.0.23\n"
        "  haproxy:\n"
        "    enabled: true\n"
        "    size: 3\n"
        "    image: custom/haproxy:1\n"
    )
    monkeypatch.setattr(settings, "pxc_cr_template_path", str(template))
    request = create_request(
        params={"cluster_size": 1, "pxc": {"disk_size": GIB}, "haproxy": {}},
    )

    await PXCClusterService(kube_client).create_cluster(request)

    cr = fake_kubectl.stored(PXC_RESOURCE, "c1")
    spec = cr["spec"]
    assert cr["metadata"]["name"] == "c1"
    assert spec["secretsName"] == "my-secrets"
    assert spec["pxc"]["size"] == 1
    assert spec["pxc"]["image"] == "percona/percona-xtradb-cluster:8.0.23"
    assert spec["pxc"]["expose"] == {"enabled": False}
    assert spec["haproxy"]["size"] == 1
    assert spec["haproxy"]["image"] == "custom/haproxy:1"
    assert spec["backup"]["schedule"][0]["storageName"] == "pxc-backup-storage-c1"
    assert fake_kubectl.stored("secret", "my-secrets") is not None


@pytest.mark.asyncio
async def test_create_clones_template_secret(fake_kubectl, kube_client, secret, monkeypatch):
    fake_kubectl.add(secret("pxc-template", {"root": "old", "xtrabackup": "kept"}))
    monkeypatch.setattr(settings, "pxc_template_secret_name", "pxc-template")

    await PXCClusterService(kube_client).create_cluster(create_request())

    data = await kube_client.get_secret("dbaas-c1-pxc-secrets")
    assert data["xtrabackup"] == "kept"
    assert data["root"] != "old"
    assert len(data["root"]) == 24


# Update


@pytest.mark.asyncio
async def test_update_resizes_nodes_and_proxy(fake_kubectl, kube_client, pxc_cr):
    fake_kubectl.add(pxc_cr("c1"))

    await PXCClusterService(kube_client).update_cluster(update_request(cluster_size=5))

    spec = fake_kubectl.stored(PXC_RESOURCE, "c1")["spec"]
    assert spec["pxc"]["size"] == 5
    assert spec["proxysql"]["size"] == 5


@pytest.mark.asyncio
async def test_update_applies_only_provided_resources(fake_kubectl, kube_client, pxc_cr):
    fake_kubectl.add(pxc_cr("c1"))

    await PXCClusterService(kube_client).update_cluster(
        update_request(pxc={"compute_resources": {"cpu_m": 2000}}, proxysql={"compute_resources": {"memory_bytes": 0}})
    )

    spec = fake_kubectl.stored(PXC_RESOURCE, "c1")["spec"]
    assert spec["pxc"]["resources"]["limits"] == {"cpu": "2000m", "memory": "2Gi"}
    assert spec["proxysql"]["resources"]["limits"] == {"cpu": "500m", "memory": "0"}
    assert spec["pxc"]["size"] == 3


@pytest.mark.asyncio
async def test_update_rejected_when_not_ready(fake_kubectl, kube_client, pxc_cr):
    original = fake_kubectl.add(pxc_cr("c1", state="initializing"))

    with pytest.raises(ClusterNotReadyError) as exc_info:
        await PXCClusterService(kube_client).update_cluster(update_request(cluster_size=5))

    assert exc_info.value.status_code == 412
    assert exc_info.value.details["retryable"] is True
    assert fake_kubectl.applied() == []
    assert fake_kubectl.stored(PXC_RESOURCE, "c1") == original


@pytest.mark.asyncio
async def test_update_missing_cluster(kube_client):
    with pytest.raises(KubectlNotFoundError) as exc_info:
        await PXCClusterService(kube_client).update_cluster(update_request(cluster_size=5))

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_update_suspend(fake_kubectl, kube_client, pxc_cr):
    fake_kubectl.add(pxc_cr("c1"))

    await PXCClusterService(kube_client).update_cluster(update_request(suspend=True))

    assert fake_kubectl.stored(PXC_RESOURCE, "c1")["spec"]["pause"] is True


@pytest.mark.asyncio
async def test_update_resume_paused_cluster_ignores_other_changes(fake_kubectl, kube_client, pxc_cr):
    fake_kubectl.add(pxc_cr("c1", state="paused", pause=True))

    await PXCClusterService(kube_client).update_cluster(update_request(resume=True, cluster_size=5))

    spec = fake_kubectl.stored(PXC_RESOURCE, "c1")["spec"]
    assert spec["pause"] is False
    assert spec["pxc"]["size"] == 3


@pytest.mark.asyncio
async def test_update_resume_requires_paused_cluster(fake_kubectl, kube_client, pxc_cr):
    fake_kubectl.add(pxc_cr("c1"))

    with pytest.raises(ClusterNotReadyError):
        await PXCClusterService(kube_client).update_cluster(update_request(resume=True))

    assert fake_kubectl.applied() == []


@pytest.mark.asyncio
async def test_update_rejects_both_proxies(fake_kubectl, kube_client):
    with pytest.raises(ValidationError):
        await PXCClusterService(kube_client).update_cluster(update_request(proxysql={}, haproxy={}))

    assert fake_kubectl.calls == []


@pytest.mark.asyncio
async def test_update_image(fake_kubectl, kube_client, pxc_cr):
    fake_kubectl.add(pxc_cr("c1"))

    await PXCClusterService(kube_client).update_cluster(
        update_request(pxc={"image": "percona/percona-xtradb-cluster:8.0.25-15.1"})
    )

    assert fake_kubectl.stored(PXC_RESOURCE, "c1")["spec"]["pxc"]["image"] == "percona/percona-xtradb-cluster:8.0.25-15.1"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "image",
    [
        "percona/percona-xtradb-cluster",
        "other/percona-xtradb-cluster:8.0.25-15.1",
    ],
)
async def test_update_rejects_invalid_image(fake_kubectl, kube_client, pxc_cr, image):
    fake_kubectl.add(pxc_cr("c1"))

    with pytest.raises(ValidationError):
        await PXCClusterService(kube_client).update_cluster(update_request(pxc={"image": image}))

    assert fake_kubectl.applied() == []


@pytest.mark.asyncio
async def test_update_with_current_image_still_resizes(fake_kubectl, kube_client, pxc_cr):
    fake_kubectl.add(pxc_cr("c1"))

    await PXCClusterService(kube_client).update_cluster(
        update_request(cluster_size=5, pxc={"image": "percona/percona-xtradb-cluster:8.0.20-11.1"})
    )

    pxc = fake_kubectl.stored(PXC_RESOURCE, "c1")["spec"]["pxc"]
    assert pxc["size"] == 5
    assert pxc["image"] == "percona/percona-xtradb-cluster:8.0.20-11.1"


# Delete, restart, credentials


@pytest.mark.asyncio
async def test_delete_removes_resource_and_secrets(fake_kubectl, kube_client, pxc_cr, secret):
    fake_kubectl.add(pxc_cr("c1"))
    fake_kubectl.add(secret("dbaas-c1-pxc-secrets", {"root": "pw"}))

    await PXCClusterService(kube_client).delete_cluster("c1")

    deleted = [obj["metadata"]["name"] for obj in fake_kubectl.deleted()]
    assert deleted == ["c1", "dbaas-c1-pxc-secrets", "internal-c1"]
    assert fake_kubectl.stored(PXC_RESOURCE, "c1") is None
    assert fake_kubectl.stored("secret", "dbaas-c1-pxc-secrets") is None


@pytest.mark.asyncio
async def test_delete_missing_cluster(kube_client):
    with pytest.raises(NotFoundError):
        await PXCClusterService(kube_client).delete_cluster("nope")


@pytest.mark.asyncio
async def test_restart_pxc_and_existing_proxy(fake_kubectl, kube_client, pxc_cr):
    fake_kubectl.add(pxc_cr("c1", proxy="haproxy"))
    fake_kubectl.add({"apiVersion": "apps/v1", "kind": "StatefulSet", "metadata": {"name": "c1-haproxy"}})

    await PXCClusterService(kube_client).restart_cluster("c1")

    rollouts = [args[-1] for args, _ in fake_kubectl.calls if args[0] == "rollout"]
    assert rollouts == ["statefulset/c1-pxc", "statefulset/c1-haproxy"]


@pytest.mark.asyncio
async def test_credentials_of_ready_cluster(fake_kubectl, kube_client, pxc_cr, secret):
    fake_kubectl.add(pxc_cr("c1"))
    fake_kubectl.add(secret("dbaas-c1-pxc-secrets", {"root": "root-password"}))

    credentials = await PXCClusterService(kube_client).get_credentials("c1")

    assert credentials.username == "root"
    assert credentials.password == "root-password"
    assert credentials.host == "c1-proxysql"
    assert credentials.port == 3306


@pytest.mark.asyncio
async def test_credentials_available_while_changing(fake_kubectl, kube_client, pxc_cr, secret):
    fake_kubectl.add(pxc_cr("c1", state="initializing"))
    fake_kubectl.add(secret("dbaas-c1-pxc-secrets", {"root": "root-password"}))

    credentials = await PXCClusterService(kube_client).get_credentials("c1")

    assert credentials.password == "root-password"


@pytest.mark.asyncio
async def test_credentials_of_failed_cluster(fake_kubectl, kube_client, pxc_cr):
    fake_kubectl.add(pxc_cr("c1", state="error"))

    with pytest.raises(ClusterNotReadyError):
        await PXCClusterService(kube_client).get_credentials("c1")


@pytest.mark.asyncio
async def test_credentials_of_missing_cluster(kube_client):
    with pytest.raises(NotFoundError):
        await PXCClusterService(kube_client).get_credentials("nope")
