"""
kubectl wrapper.

Every call is a single kubectl process. Request bodies are passed on stdin as
indented JSON, responses are decoded from stdout. A failed call raises
KubectlError with the command line and stderr; a missing object raises
KubectlNotFoundError so callers never inspect stderr themselves.
"""
import asyncio
import json
import os
import shutil
import tempfile
from typing import Any, Dict, List, Optional, Sequence

from tenacity import (
    retry,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from dbaas_controller.config.logging import get_logger
from dbaas_controller.config.settings import settings
from dbaas_controller.exceptions import KubectlError, KubectlNotFoundError

logger = get_logger(__name__)

KUBECONFIG_FILE_NAME = "kubeconfig.json"
NOT_FOUND_MARKERS = ("(NotFound)", "not found")


def _is_not_found(stderr: str) -> bool:
    return any(marker in stderr for marker in NOT_FOUND_MARKERS)


def default_kubectl_cmd() -> List[str]:
    """
    Locate the kubectl used before the server version is known.

    Prefers the bundled binary and falls back to ``minikube kubectl --`` on
    development machines.
    """
    kubectl_path = shutil.which(settings.kubectl_path)
    if kubectl_path:
        return [kubectl_path]

    dev_cmd = settings.kubectl_dev_command.split()
    dev_path = shutil.which(dev_cmd[0])
    if dev_path:
        return [dev_path] + dev_cmd[1:]

    raise KubectlError(
        f"cannot find default kubectl: {settings.kubectl_path} or {settings.kubectl_dev_command}"
    )


def select_kubectl_versions(versions: Dict[str, Any]) -> List[str]:
    """
    Candidate kubectl binary names for a server version, newest first.

    kubectl is supported within one minor version (older or newer) of
    kube-apiserver.
    """
    server = versions.get("serverVersion") or {}
    try:
        major = int(str(server.get("major", "")).rstrip("+"))
        minor = int(str(server.get("minor", "")).rstrip("+"))
    except ValueError as e:
        raise KubectlError(f"cannot parse Kubernetes server version: {server}") from e

    return [f"kubectl-{major}.{m}" for m in range(minor + 1, minor - 2, -1)]


def lookup_kubectl_cmd(default_cmd: List[str], candidates: Sequence[str]) -> List[str]:
    for name in candidates:
        path = shutil.which(name)
        if path:
            return [path]
    return default_cmd


def save_kubeconfig(kubeconfig: str):
    """Write kubeconfig to a private temp dir. Returns (tmp_dir, path)."""
    tmp_dir = tempfile.mkdtemp(prefix="dbaas-controller-kubeconfigs-")
    path = os.path.join(tmp_dir, KUBECONFIG_FILE_NAME)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(kubeconfig)
    return tmp_dir, path


class KubeCtl:
    """Runs kubectl commands against one Kubernetes cluster."""

    def __init__(
        self,
        cmd: List[str],
        tmp_dir: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.cmd = list(cmd)
        self.tmp_dir = tmp_dir
        self.timeout = timeout if timeout is not None else settings.kubectl_timeout_seconds

    @classmethod
    async def create(cls, kubeconfig: str) -> "KubeCtl":
        """
        Build a KubeCtl for the cluster described by ``kubeconfig``.

        Without a kubeconfig the default kubectl and its current context are
        used. Otherwise the kubeconfig is saved to a temp dir and a kubectl
        matching the server version is picked when one is installed.
        """
        default_cmd = default_kubectl_cmd()
        if not kubeconfig:
            return cls(default_cmd)

        tmp_dir, kubeconfig_path = save_kubeconfig(kubeconfig)
        try:
            probe = cls(default_cmd + [f"--kubeconfig={kubeconfig_path}"], tmp_dir=tmp_dir)
            versions = await probe._server_versions()
            cmd = lookup_kubectl_cmd(default_cmd, select_kubectl_versions(versions))
        except BaseException:
            shutil.rmtree(tmp_dir, ignore_errors=True)
            raise

        logger.info("kubectl_selected", cmd=" ".join(cmd), kubeconfig_path=kubeconfig_path)
        cmd = cmd + [f"--kubeconfig={kubeconfig_path}"]
        if settings.k8s_namespace:
            cmd.append(f"--namespace={settings.k8s_namespace}")
        return cls(cmd, tmp_dir=tmp_dir)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(KubectlError) & retry_if_not_exception_type(KubectlNotFoundError),
        reraise=True,
    )
    async def _server_versions(self) -> Dict[str, Any]:
        stdout = await self.run(["version", "-o", "json"])
        return self._decode(stdout, "version")

    def cleanup(self) -> None:
        """Remove the temp dir holding the kubeconfig."""
        if self.tmp_dir:
            shutil.rmtree(self.tmp_dir, ignore_errors=True)
            self.tmp_dir = None

    async def run(self, args: Sequence[str], stdin: Any = None) -> bytes:
        """
        Execute kubectl with ``args`` and return stdout.

        Args:
            args: kubectl arguments
            stdin: object encoded as indented JSON and fed to kubectl

        Raises:
            KubectlNotFoundError: kubectl reported a missing object
            KubectlError: any other failure, including timeouts
        """
        cmd = self.cmd + list(args)
        cmd_line = " ".join(cmd)

        payload = None
        if stdin is not None:
            payload = (json.dumps(stdin, indent=2) + "\n").encode()
            logger.debug("running_kubectl", cmd=cmd_line, stdin=payload.decode())
        else:
            logger.debug("running_kubectl", cmd=cmd_line)

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if payload is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise KubectlError(f"cannot start kubectl: {e}", cmd=cmd_line) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(payload), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            await self._kill(process)
            raise KubectlError(f"kubectl timed out after {self.timeout}s", cmd=cmd_line) from e
        except asyncio.CancelledError:
            await self._kill(process)
            raise

        err_text = stderr.decode(errors="replace") if stderr else ""
        if process.returncode != 0:
            logger.debug("kubectl_command_failed", cmd=cmd_line, return_code=process.returncode, stderr=err_text)
            message = f"exit status {process.returncode}"
            if _is_not_found(err_text):
                raise KubectlNotFoundError(message, cmd=cmd_line, stderr=err_text)
            raise KubectlError(message, cmd=cmd_line, stderr=err_text)

        return stdout or b""

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    @staticmethod
    def _decode(stdout: bytes, what: str) -> Dict[str, Any]:
        try:
            return json.loads(stdout)
        except ValueError as e:
            raise KubectlError(f"cannot decode kubectl {what} output: {e}") from e

    async def get(self, kind: str, name: Optional[str] = None, extra_args: Sequence[str] = ()) -> Dict[str, Any]:
        """``kubectl get -o=json kind [name]`` decoded to a dict."""
        args = ["get", "-o=json", kind]
        if name:
            args.append(name)
        args.extend(extra_args)
        stdout = await self.run(args)
        return self._decode(stdout, f"get {kind}")

    async def apply(self, resource: Dict[str, Any]) -> None:
        await self.run(["apply", "-f", "-"], stdin=resource)

    async def delete(self, resource: Dict[str, Any]) -> None:
        await self.run(["delete", "-f", "-"], stdin=resource)
