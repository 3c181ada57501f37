"""FastAPI dependencies resolving the service components from app state."""

from fastapi import Request

from harbor_bridge.metrics import BridgeMetrics
from harbor_bridge.registry import SessionRegistry
from ingest_api.config import Settings
from ingest_api.connections import ConnectionManager


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def get_connections(request: Request) -> ConnectionManager:
    return request.app.state.connections


def get_metrics(request: Request) -> BridgeMetrics:
    return request.app.state.metrics
