"""Main FastAPI application for the Harbor ingest API."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CollectorRegistry

from harbor_bridge.config import BridgeConfig, get_config
from harbor_bridge.metadata import MetadataUpdater
from harbor_bridge.metrics import BridgeMetrics
from harbor_bridge.registry import SessionRegistry
from ingest_api.config import Settings, get_settings
from ingest_api.connections import ConnectionManager
from ingest_api.error_handler import setup_exception_handlers
from ingest_api.logging_config import setup_logging
from ingest_api.routes import health, ingest

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown.

    Args:
        app: FastAPI application instance.
    """
    settings: Settings = app.state.settings
    config: BridgeConfig = app.state.bridge_config
    logger.info(f"Starting {settings.app_name} (upstream {config.target})...")

    metadata_updater = None
    if config.metadata_updates:
        metadata_updater = MetadataUpdater(
            config.host, config.port, timeout=settings.metadata_timeout
        )

    app.state.metrics = BridgeMetrics(registry=CollectorRegistry())
    app.state.connections = ConnectionManager()
    app.state.registry = SessionRegistry(
        config=config, metrics=app.state.metrics, metadata_updater=metadata_updater
    )

    logger.info(f"{settings.app_name} ready on port {settings.port}")
    try:
        yield
    finally:
        logger.info(f"Shutting down {settings.app_name}...")
        await app.state.registry.shutdown()


def create_app(
    settings: Optional[Settings] = None, bridge_config: Optional[BridgeConfig] = None
) -> FastAPI:
    """Build the ingest application.

    Args:
        settings: Service settings (read from the environment if not given)
        bridge_config: Relay settings (read from the environment if not given)

    Returns:
        FastAPI: Configured application.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="WebSocket ingest relaying browser audio to Icecast/Shoutcast SOURCE ports",
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.bridge_config = bridge_config or get_config()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_exception_handlers(app)

    app.include_router(health.router, tags=["Monitoring"])
    app.include_router(ingest.router, tags=["Ingest"])

    return app


def main() -> None:
    """Run the ingest service with uvicorn."""
    import uvicorn

    settings = get_settings()
    setup_logging(settings)
    uvicorn.run(
        "ingest_api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


app = create_app()


if __name__ == "__main__":
    main()
