# /flowgate/routes/public.py

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest
from datetime import datetime, timezone

from flowgate.config.settings import settings
from flowgate.utils.dependencies import verify_metrics_access
from flowgate.services.cache_service import cache_service
from flowgate.services.db_service import db_service

# Unauthenticated probes for load balancers and orchestrators. The /metrics
# endpoint is protected by an API key when one is configured.

router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Flowgate WhatsApp Flow endpoint",
        "version": "1.0.0",
        "status": "operational",
        "environment": settings.environment
    }


@router.get("/health", summary="Basic Health Check")
async def health_check():
    """Basic health check for load balancers."""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc)}


@router.get("/health/ready", summary="Readiness Probe")
async def readiness_check():
    """Readiness probe checking MongoDB and Redis."""
    if not await db_service.health_check():
        raise HTTPException(status_code=503, detail="Service not ready: database unavailable")
    try:
        await cache_service.ping()
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"Service not ready: {e}")
    return {"status": "ready"}


@router.get("/metrics", tags=["Monitoring"])
async def metrics(request: Request, _: bool = Depends(verify_metrics_access)):
    """Secured Prometheus metrics endpoint."""
    return PlainTextResponse(generate_latest(), media_type="text/plain")
