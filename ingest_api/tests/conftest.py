"""
Pytest configuration and fixtures for ingest API tests.

The relay points at a local port with nothing listening, so sessions fail
to connect; end-to-end relaying is covered in tests/integration.
"""

import socket
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from harbor_bridge.config import BridgeConfig
from ingest_api.config import Settings
from ingest_api.main import create_app


@pytest.fixture
def unused_port() -> int:
    """A local port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        app_name="Harbor Ingest Test",
        environment="test",
        max_frame_bytes=4096,
        cors_origins=["http://localhost:3000"],
    )


@pytest.fixture
def bridge_config(unused_port: int) -> BridgeConfig:
    """Relay configuration that gives up on the first failed connect."""
    return BridgeConfig(
        host="127.0.0.1",
        port=unused_port,
        mount_points=["/"],
        connect_timeout=0.5,
        acceptance_timeout=0.1,
        backoff_base=0.01,
        max_retry_attempts=0,
        metadata_updates=False,
    )


@pytest.fixture
def client(test_settings: Settings, bridge_config: BridgeConfig) -> Generator[TestClient, None, None]:
    """Test client with the application lifespan running."""
    app = create_app(settings=test_settings, bridge_config=bridge_config)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def start_message() -> dict:
    return {
        "type": "start-stream",
        "user": "source",
        "password": "hackme",
        "mime": "audio/mpeg",
        "iceMetadata": {"name": "Test FM", "genre": "Rock"},
    }
