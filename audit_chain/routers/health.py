"""
Health check and monitoring endpoints.
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from audit_chain.dependencies import get_storage
from audit_chain.models import HealthStatus
from audit_chain.storage import AuditStorage

router = APIRouter(tags=["monitoring"])

# Track application start time
START_TIME = time.time()


@router.get("/health", response_model=HealthStatus)
async def health_check(request: Request, storage: AuditStorage = Depends(get_storage)):
    """
    Health check endpoint.

    Returns the overall health status of the service including
    storage availability, uptime and application version.
    """
    storage_healthy = await storage.health_check()

    return HealthStatus(
        status="healthy" if storage_healthy else "unhealthy",
        version=request.app.version,
        storage="connected" if storage_healthy else "disconnected",
        uptime_seconds=time.time() - START_TIME,
        timestamp=datetime.now(timezone.utc)
    )


@router.get("/health/live")
async def liveness_check():
    """
    Kubernetes liveness probe.

    Does not check dependencies.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(storage: AuditStorage = Depends(get_storage)):
    """Kubernetes readiness probe. Verifies storage availability."""
    if not await storage.health_check():
        return Response(
            content='{"status": "not ready", "reason": "storage unavailable"}',
            status_code=503,
            media_type="application/json"
        )

    return {"status": "ready"}


@router.get("/metrics")
async def metrics(request: Request):
    """Prometheus metrics endpoint."""
    if not request.app.state.settings.enable_metrics:
        return Response(status_code=404)

    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )
