"""
Metrics endpoint for Prometheus scraping.
"""
from fastapi import APIRouter, HTTPException, Response, status

from meterhub.core.config import settings
from meterhub.core.metrics import get_metrics, get_metrics_content_type

router = APIRouter(tags=["Metrics"])


@router.get("/metrics")
async def prometheus_metrics():
    """
    Expose storage, query and HTTP metrics in Prometheus text format.
    """
    if not settings.ENABLE_METRICS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Metrics are disabled")
    return Response(content=get_metrics(), media_type=get_metrics_content_type())
