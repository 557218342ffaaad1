"""
Health check endpoints for monitoring and orchestration.
Provides liveness, readiness, and startup probes.
"""
from datetime import datetime

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from dbaas_controller.config.settings import settings
from dbaas_controller.exceptions import KubectlError
from dbaas_controller.services.kubectl import default_kubectl_cmd

router = APIRouter()


def _kubectl_available() -> bool:
    try:
        default_kubectl_cmd()
    except KubectlError:
        return False
    return True


@router.get("/")
async def health_check():
    """
    Basic health check endpoint.
    Returns current status and version.
    """
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.get("/live")
async def liveness():
    """
    Kubernetes liveness probe.
    Indicates whether the application should be restarted.
    """
    return {"status": "alive", "timestamp": datetime.utcnow().isoformat()}


@router.get("/ready")
async def readiness():
    """
    Kubernetes readiness probe.
    Every request shells out to kubectl, so the service is ready only when
    a kubectl binary can be located.
    """
    if not _kubectl_available():
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "kubectl": "missing",
                "timestamp": datetime.utcnow().isoformat(),
            },
        )

    return {
        "status": "ready",
        "kubectl": "available",
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.get("/startup")
async def startup():
    """Kubernetes startup probe."""
    return {
        "status": "started",
        "timestamp": datetime.utcnow().isoformat(),
    }
