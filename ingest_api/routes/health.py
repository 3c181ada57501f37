"""Health, statistics and Prometheus routes."""

from datetime import datetime

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST

from harbor_bridge.metrics import BridgeMetrics
from harbor_bridge.registry import SessionRegistry
from ingest_api.config import Settings
from ingest_api.connections import ConnectionManager
from ingest_api.dependencies import get_connections, get_metrics, get_registry, get_settings

router = APIRouter()


@router.get("/health")
async def health_check(
    settings: Settings = Depends(get_settings),
    registry: SessionRegistry = Depends(get_registry),
    connections: ConnectionManager = Depends(get_connections),
):
    """Health check endpoint.

    Returns:
        dict: Health status.
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "timestamp": datetime.utcnow().isoformat(),
        "environment": settings.environment,
        "upstream": registry.config.target,
        "active_sessions": registry.active_count,
        "connected_producers": len(connections.active_connections),
    }


@router.get("/stats")
async def get_stats(
    registry: SessionRegistry = Depends(get_registry),
    connections: ConnectionManager = Depends(get_connections),
):
    """Per-session relay state and producer connection counters.

    Returns:
        dict: Registry and connection statistics.
    """
    return {
        "timestamp": datetime.utcnow().isoformat(),
        "relay": registry.get_stats(),
        "connections": connections.get_stats(),
    }


@router.get("/metrics")
async def prometheus_metrics(metrics: BridgeMetrics = Depends(get_metrics)):
    """Prometheus text exposition of the relay metrics."""
    return Response(content=metrics.export(), media_type=CONTENT_TYPE_LATEST)
