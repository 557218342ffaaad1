"""
Custom exceptions for the DBaaS controller.

Every error raised by the translators and the cluster-tool client derives
from DBaaSException so the API layer can render it with a stable status code.
"""
from typing import Optional, Dict, Any
from fastapi import status


class DBaaSException(Exception):
    """
    Base exception for all controller errors.

    All custom exceptions should inherit from this base class.
    """

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(DBaaSException):
    """
    Raised when request validation fails.

    Used for mutually exclusive flags, missing proxy definitions, bad image tags.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class NotFoundError(DBaaSException):
    """
    Raised when a requested resource is not found.

    Used for clusters and secrets missing from the Kubernetes cluster.
    """

    def __init__(self, resource: str, resource_id: str, details: Optional[Dict[str, Any]] = None):
        message = f"{resource} '{resource_id}' not found"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details=details or {"resource": resource, "resource_id": resource_id},
        )


class ConflictError(DBaaSException):
    """
    Raised when a resource conflict occurs.

    Used for duplicate cluster names on create.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


class ClusterNotReadyError(DBaaSException):
    """
    Raised when a cluster is not in a state that allows the operation.

    Clients are expected to poll the cluster list and retry once it is ready.
    """

    def __init__(self, name: str, state: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Cluster '{name}' is not ready (state: {state})",
            status_code=status.HTTP_412_PRECONDITION_FAILED,
            details={"name": name, "state": state, "retryable": True},
        )


class PreconditionFailedError(DBaaSException):
    """
    Raised when the target Kubernetes cluster is not usable.

    Used when the cluster cannot be reached and when the required database
    operator is not installed.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_412_PRECONDITION_FAILED,
            details=details,
        )


class KubernetesError(DBaaSException):
    """
    Raised when Kubernetes operations fail.

    Used for unexpected documents returned by the cluster.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Kubernetes error: {message}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details,
        )


class KubectlError(DBaaSException):
    """
    Raised when a kubectl invocation fails.

    Carries the executed command line and the captured stderr.
    """

    def __init__(self, message: str, cmd: str = "", stderr: str = ""):
        self.cmd = cmd
        self.stderr = stderr
        text = message
        if cmd:
            text = f"{text}\ncmd: {cmd}\nstderr: {stderr}"
        super().__init__(
            message=text,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"cmd": cmd, "stderr": stderr},
        )


class KubectlNotFoundError(KubectlError):
    """Raised when kubectl reports that the requested object does not exist."""

    def __init__(self, message: str, cmd: str = "", stderr: str = ""):
        super().__init__(message, cmd=cmd, stderr=stderr)
        self.status_code = status.HTTP_404_NOT_FOUND


class ConversionError(DBaaSException):
    """Raised when a quantity string cannot be converted to a number."""

    def __init__(self, message: str, value: str = ""):
        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"value": value},
        )


__all__ = [
    "DBaaSException",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "ClusterNotReadyError",
    "PreconditionFailedError",
    "KubernetesError",
    "KubectlError",
    "KubectlNotFoundError",
    "ConversionError",
]
