"""
Pydantic models shared by every endpoint that talks to a Kubernetes cluster.
"""
from pydantic import BaseModel, Field


class KubeAuth(BaseModel):
    """Credentials of the target Kubernetes cluster."""

    kubeconfig: str = Field(..., description="Serialized kubeconfig document")


class KubeAuthRequest(BaseModel):
    """Base for requests addressed to a Kubernetes cluster."""

    kube_auth: KubeAuth = Field(..., description="Target cluster credentials")


class Operators(BaseModel):
    """Installed operator versions; empty string means not installed."""

    pxc_operator_version: str = Field(default="", description="Percona XtraDB Cluster operator version")
    psmdb_operator_version: str = Field(default="", description="Percona Server for MongoDB operator version")


class CheckConnectionRequest(KubeAuthRequest):
    """Request model for checking a Kubernetes cluster connection."""


class CheckConnectionResponse(BaseModel):
    """Response model for a successful connection check."""

    operators: Operators
