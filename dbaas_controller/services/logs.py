"""
Cluster log collection.

Log sources form a closed set (see LogSource); ``get_logs`` dispatches to
the collector of the requested source.
"""
from typing import Awaitable, Callable, Dict, List

from dbaas_controller.config.logging import get_logger
from dbaas_controller.config.settings import settings
from dbaas_controller.exceptions import ValidationError
from dbaas_controller.models.logs import LogSource, Logs
from dbaas_controller.services.kube_client import KubeClient

logger = get_logger(__name__)


def limit_lines(entries: List[Logs], limit: int) -> None:
    """
    Trim entries in place so they hold at most ``limit`` lines overall.

    Lines are handed out one per entry in round-robin order until the limit
    is reached or every entry is exhausted. Each entry keeps its newest lines.
    """
    counts = [0] * len(entries)
    total = 0
    progressed = True
    while total < limit and progressed:
        progressed = False
        for i, entry in enumerate(entries):
            if counts[i] < len(entry.logs):
                counts[i] += 1
                total += 1
                progressed = True
                if total == limit:
                    break

    for entry, count in zip(entries, counts):
        entry.logs = entry.logs[len(entry.logs) - count:]


async def all_logs(client: KubeClient, cluster_name: str) -> List[Logs]:
    """Logs of every container of every cluster pod, followed by pod events."""
    pods = await client.get_cluster_pods(cluster_name)

    entries: List[Logs] = []
    for pod in pods:
        pod_name = pod["metadata"]["name"]
        spec = pod.get("spec") or {}
        status = pod.get("status") or {}

        groups = (
            (spec.get("containers") or [], status.get("containerStatuses") or []),
            (spec.get("initContainers") or [], status.get("initContainerStatuses") or []),
        )
        for containers, statuses in groups:
            for container in containers:
                lines = await client.get_logs(statuses, pod_name, container["name"])
                if not lines:
                    continue
                entries.append(Logs(pod=pod_name, container=container["name"], logs=lines))

        events = await client.get_events(pod_name)
        entries.append(Logs(pod=pod_name, container="", logs=events))

    limit_lines(entries, settings.logs_overall_lines_limit)
    logger.debug("collected_cluster_logs", cluster=cluster_name, pods=len(pods), entries=len(entries))
    return entries


LogCollector = Callable[[KubeClient, str], Awaitable[List[Logs]]]

LOG_COLLECTORS: Dict[LogSource, LogCollector] = {
    LogSource.ALL: all_logs,
}


def collector_for(source: LogSource) -> LogCollector:
    """
    Collector of a log source.

    Raises:
        ValidationError: the source has no collector
    """
    collector = LOG_COLLECTORS.get(source)
    if collector is None:
        raise ValidationError(
            f"log source '{source.value}' is not supported",
            details={"source": source.value},
        )
    return collector


async def get_logs(source: LogSource, client: KubeClient, cluster_name: str) -> List[Logs]:
    """Collect logs of a cluster from the given source."""
    return await collector_for(source)(client, cluster_name)
