"""
Pydantic models for cluster logs.
"""
from enum import Enum
from typing import List

from pydantic import BaseModel, Field

from dbaas_controller.models.kubernetes import KubeAuthRequest


class LogSource(str, Enum):
    """Where log lines are collected from."""

    ALL = "all"
    FAILING_ONLY = "failing_only"


class Logs(BaseModel):
    """Log lines of one container, or events of a pod when container is empty."""

    pod: str
    container: str = ""
    logs: List[str] = Field(default_factory=list)


class GetLogsRequest(KubeAuthRequest):
    """Request model for fetching logs of a database cluster."""

    cluster_name: str = Field(..., min_length=1, description="Database cluster name")
    source: LogSource = Field(default=LogSource.ALL, description="Log source")


class GetLogsResponse(BaseModel):
    logs: List[Logs]
