"""
Health check endpoint.
"""
from fastapi import APIRouter, Depends
from typing import Dict, Any

from meterhub.api.deps import get_backend
from meterhub.core.config import settings
from meterhub.core.exceptions import MeterHubError
from meterhub.storage.base import PersistenceBackend

router = APIRouter()


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """
    Basic health check endpoint.
    """
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
    }


@router.get("/health/detailed")
async def detailed_health_check(
    backend: PersistenceBackend = Depends(get_backend)
) -> Dict[str, Any]:
    """
    Detailed health check including storage connectivity.
    """
    health_status = {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "checks": {
            "storage": "unknown",
        },
        "storage_backend": backend.name,
    }

    # Check storage by listing users
    try:
        await backend.get_users()
        health_status["checks"]["storage"] = "healthy"
    except MeterHubError as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["storage"] = f"unhealthy: {e.message}"

    return health_status
