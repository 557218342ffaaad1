"""
Pytest configuration and fixtures.

FakeKubeCtl stands in for the kubectl process: it keeps objects in memory,
records every call and answers the verbs used by KubeClient.
"""
import base64
import copy
import json
from typing import Any, AsyncGenerator, Dict, List, Optional, Sequence, Tuple

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from dbaas_controller.config.settings import settings
from dbaas_controller.exceptions import KubectlError, KubectlNotFoundError
from dbaas_controller.main import app
from dbaas_controller.services.kube_client import INSTANCE_LABEL, MANAGED_BY_LABEL, KubeClient
from dbaas_controller.services.kubectl import KubeCtl

KIND_RESOURCES = {
    "Secret": "secret",
    "PerconaXtraDBCluster": "perconaxtradbclusters",
    "PerconaServerMongoDB": "perconaservermongodbs",
    "Pod": "pods",
    "StatefulSet": "statefulset",
    "StorageClass": "storageclass",
}

KUBECONFIG = '{"apiVersion": "v1", "kind": "Config"}'


class FakeKubeCtl(KubeCtl):
    """In-memory kubectl."""

    def __init__(self):
        super().__init__(["kubectl"])
        self.objects: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.calls: List[Tuple[List[str], Any]] = []
        self.api_versions: List[str] = []
        self.logs: Dict[Tuple[str, str], str] = {}
        self.events: Dict[str, str] = {}
        self.failures: Dict[str, KubectlError] = {}

    # Test setup

    def add(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        resource = KIND_RESOURCES[obj["kind"]]
        self.objects[(resource, obj["metadata"]["name"])] = copy.deepcopy(obj)
        return obj

    def stored(self, resource: str, name: str) -> Optional[Dict[str, Any]]:
        return self.objects.get((resource, name))

    def verbs(self) -> List[str]:
        return [args[0] for args, _ in self.calls]

    def applied(self) -> List[Dict[str, Any]]:
        return [stdin for args, stdin in self.calls if args[0] == "apply"]

    def deleted(self) -> List[Dict[str, Any]]:
        return [stdin for args, stdin in self.calls if args[0] == "delete"]

    # kubectl

    async def run(self, args: Sequence[str], stdin: Any = None) -> bytes:
        args = list(args)
        self.calls.append((args, copy.deepcopy(stdin)))
        verb = args[0]
        if verb in self.failures:
            raise self.failures[verb]

        if verb == "get":
            return self._get(args)
        if verb == "apply":
            self.add(stdin)
            return b""
        if verb == "delete":
            key = (KIND_RESOURCES[stdin["kind"]], stdin["metadata"]["name"])
            if key not in self.objects:
                raise KubectlNotFoundError("exit status 1", cmd=" ".join(args), stderr="Error from server (NotFound)")
            del self.objects[key]
            return b""
        if verb == "api-versions":
            return "\n".join(self.api_versions).encode()
        if verb == "logs":
            pod = args[1]
            container = ""
            for arg in args:
                if arg.startswith("--container="):
                    container = arg.split("=", 1)[1]
            return self.logs.get((pod, container), "").encode()
        if verb == "describe":
            return self.events.get(args[2], "").encode()
        return b""

    def _get(self, args: List[str]) -> bytes:
        resource = args[2]
        rest = args[3:]
        name = rest[0] if rest and not rest[0].startswith("--") else None
        if name:
            obj = self.objects.get((resource, name))
            if obj is None:
                raise KubectlNotFoundError(
                    "exit status 1",
                    cmd="kubectl " + " ".join(args),
                    stderr=f'Error from server (NotFound): {resource} "{name}" not found',
                )
            return json.dumps(obj).encode()

        selector = {}
        for arg in rest:
            if arg.startswith("--selector="):
                key, value = arg.split("=", 1)[1].split("=", 1)
                selector[key] = value

        items = []
        for (kind, _), obj in self.objects.items():
            if kind != resource:
                continue
            labels = obj.get("metadata", {}).get("labels") or {}
            if all(labels.get(k) == v for k, v in selector.items()):
                items.append(obj)
        return json.dumps({"items": items}).encode()


def make_pxc_cr(
    name: str,
    state: str = "ready",
    size: int = 3,
    image: str = "percona/percona-xtradb-cluster:8.0.20-11.1",
    proxy: str = "proxysql",
    pause: bool = False,
    conditions: bool = True,
) -> Dict[str, Any]:
    proxy_spec = {
        "enabled": True,
        "size": size,
        "serviceType": "ClusterIP",
        "resources": {"limits": {"cpu": "500m", "memory": "1G"}},
    }
    if proxy == "proxysql":
        proxy_spec["volumeSpec"] = {
            "persistentVolumeClaim": {"resources": {"requests": {"storage": "1Gi"}}},
        }
    cr = {
        "apiVersion": "pxc.percona.com/v1-11-0",
        "kind": "PerconaXtraDBCluster",
        "metadata": {"name": name},
        "spec": {
            "crVersion": "1.11.0",
            "secretsName": f"dbaas-{name}-pxc-secrets",
            "pause": pause,
            "pxc": {
                "size": size,
                "image": image,
                "resources": {"limits": {"cpu": "1", "memory": "2Gi"}},
                "volumeSpec": {
                    "persistentVolumeClaim": {"resources": {"requests": {"storage": "10Gi"}}},
                },
            },
            proxy: proxy_spec,
        },
        "status": {
            "state": state,
            "host": f"{name}-{proxy}",
            "message": ["pxc: waiting", "proxy: waiting"],
            "pxc": {"size": size, "ready": size - 1},
            proxy: {"size": size, "ready": size},
        },
    }
    if conditions:
        cr["status"]["conditions"] = [{"type": "initializing", "status": "True"}]
    return cr


def make_psmdb_cr(
    name: str,
    state: str = "ready",
    size: int = 3,
    image: str = "percona/percona-server-mongodb:4.2.8-8",
    replset_statuses: Optional[List[str]] = None,
    pause: bool = False,
) -> Dict[str, Any]:
    statuses = replset_statuses if replset_statuses is not None else ["ready"]
    return {
        "apiVersion": "psmdb.percona.com/v1-11-0",
        "kind": "PerconaServerMongoDB",
        "metadata": {"name": name},
        "spec": {
            "crVersion": "1.11.0",
            "image": image,
            "pause": pause,
            "secrets": {"users": f"dbaas-{name}-psmdb-secrets"},
            "sharding": {"mongos": {"expose": {"exposeType": "ClusterIP"}}},
            "replsets": [
                {
                    "name": "rs0",
                    "size": size,
                    "resources": {"limits": {"cpu": "300m", "memory": "500M"}},
                    "volumeSpec": {
                        "persistentVolumeClaim": {"resources": {"requests": {"storage": "1G"}}},
                    },
                }
            ],
        },
        "status": {
            "state": state,
            "host": f"{name}-rs0.default.svc.cluster.local",
            "conditions": [{"type": "ready", "message": "last condition"}],
            "replsets": {
                f"rs{i}": {"size": size, "ready": size, "status": status}
                for i, status in enumerate(statuses)
            },
            "mongos": {"size": 1, "ready": 1},
        },
    }


def make_pod(
    name: str,
    instance: Optional[str],
    managed_by: str = "percona-xtradb-cluster-operator",
    containers: Optional[Dict[str, str]] = None,
    init_containers: Optional[Dict[str, str]] = None,
    waiting: Sequence[str] = (),
) -> Dict[str, Any]:
    labels = {MANAGED_BY_LABEL: managed_by}
    if instance is not None:
        labels[INSTANCE_LABEL] = instance
    containers = containers if containers is not None else {"pxc": "percona/percona-xtradb-cluster:8.0.20-11.1"}
    init_containers = init_containers or {}

    def status_of(container: str) -> Dict[str, Any]:
        state = {"waiting": {"reason": "PodInitializing"}} if container in waiting else {"running": {}}
        return {"name": container, "state": state}

    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": name, "labels": labels},
        "spec": {
            "containers": [{"name": c, "image": image} for c, image in containers.items()],
            "initContainers": [{"name": c, "image": image} for c, image in init_containers.items()],
        },
        "status": {
            "containerStatuses": [status_of(c) for c in containers],
            "initContainerStatuses": [status_of(c) for c in init_containers],
        },
    }


def make_secret(name: str, data: Dict[str, str]) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": name},
        "data": {k: base64.b64encode(v.encode()).decode() for k, v in data.items()},
    }


@pytest.fixture(scope="session")
def test_settings():
    """Override settings for testing."""
    settings.environment = "testing"
    settings.debug = True
    return settings


@pytest.fixture(autouse=True)
def no_cr_templates(tmp_path, monkeypatch):
    """Point CR templates and template secrets at nothing unless a test sets them."""
    monkeypatch.setattr(settings, "pxc_cr_template_path", str(tmp_path / "missing-pxc.cr.yml"))
    monkeypatch.setattr(settings, "psmdb_cr_template_path", str(tmp_path / "missing-psmdb.cr.yml"))
    monkeypatch.setattr(settings, "pxc_template_secret_name", None)
    monkeypatch.setattr(settings, "psmdb_template_secret_name", None)


@pytest.fixture
def fake_kubectl() -> FakeKubeCtl:
    kubectl = FakeKubeCtl()
    kubectl.api_versions = [
        "apps/v1",
        "pxc.percona.com/v1",
        "pxc.percona.com/v1-10-0",
        "pxc.percona.com/v1-11-0",
        "psmdb.percona.com/v1-11-0",
        "v1",
    ]
    kubectl.add({
        "apiVersion": "storage.k8s.io/v1",
        "kind": "StorageClass",
        "metadata": {"name": "gp2"},
        "provisioner": "kubernetes.io/aws-ebs",
    })
    return kubectl


@pytest.fixture
def kube_client(fake_kubectl: FakeKubeCtl) -> KubeClient:
    return KubeClient(fake_kubectl)


@pytest.fixture
def connect_calls(fake_kubectl: FakeKubeCtl, monkeypatch) -> List[str]:
    """Route KubeClient.connect to the fake kubectl; returns the kubeconfigs seen."""
    calls: List[str] = []

    async def fake_connect(cls, kubeconfig: str) -> KubeClient:
        calls.append(kubeconfig)
        return cls(fake_kubectl)

    monkeypatch.setattr(KubeClient, "connect", classmethod(fake_connect))
    return calls


@pytest_asyncio.fixture
async def test_client(connect_calls) -> AsyncGenerator[AsyncClient, None]:
    """Create test client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def kube_auth() -> Dict[str, Any]:
    return {"kubeconfig": KUBECONFIG}


@pytest.fixture
def pxc_cr():
    return make_pxc_cr


@pytest.fixture
def psmdb_cr():
    return make_psmdb_cr


@pytest.fixture
def pod():
    return make_pod


@pytest.fixture
def secret():
    return make_secret
