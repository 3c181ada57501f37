"""Tests for the ingest HTTP routes and producer WebSocket."""

import pytest
from fastapi.testclient import TestClient

from harbor_bridge.config import BridgeConfig
from ingest_api.main import create_app


def _receive_until(websocket, message_type: str, limit: int = 20) -> dict:
    """Read notifications until one of the given type arrives."""
    for _ in range(limit):
        message = websocket.receive_json()
        if message["type"] == message_type:
            return message
    raise AssertionError(f"No {message_type} message received")


class TestHttpRoutes:
    """Test health, stats and metrics routes."""

    def test_health(self, client, bridge_config):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "Harbor Ingest Test"
        assert data["upstream"] == bridge_config.target
        assert data["active_sessions"] == 0

    def test_stats(self, client):
        response = client.get("/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["relay"]["active_sessions"] == 0
        assert data["relay"]["duplicate_policy"] == "reject"
        assert data["connections"]["connected_producers"] == 0

    def test_metrics(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "harbor_sessions_active" in response.text


class TestIngestWebSocket:
    """Test the producer WebSocket."""

    def test_bridge_connected(self, client):
        with client.websocket_connect("/stream?client_id=dj-1") as websocket:
            message = websocket.receive_json()

        assert message["type"] == "bridge-connected"
        assert message["clientId"] == "dj-1"

    def test_generated_client_id(self, client):
        with client.websocket_connect("/") as websocket:
            message = websocket.receive_json()
        assert message["type"] == "bridge-connected"
        assert len(message["clientId"]) == 36

    def test_webcast_subprotocol(self, client):
        with client.websocket_connect("/", subprotocols=["webcast"]) as websocket:
            assert websocket.accepted_subprotocol == "webcast"
            websocket.receive_json()

    def test_ping(self, client):
        with client.websocket_connect("/stream") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "ping"})
            message = websocket.receive_json()

        assert message["type"] == "pong"
        assert message["active"] is False
        assert "timestamp" in message

    def test_invalid_json_keeps_connection(self, client):
        with client.websocket_connect("/stream") as websocket:
            websocket.receive_json()
            websocket.send_text("{not json")
            error = websocket.receive_json()

            websocket.send_json({"type": "ping"})
            pong = websocket.receive_json()

        assert error == {
            "type": "stream-error",
            "error": "invalid-message",
            "message": "Message is not valid JSON",
        }
        assert pong["type"] == "pong"

    def test_start_without_password(self, client):
        with client.websocket_connect("/stream") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "start-stream", "user": "dj"})
            message = websocket.receive_json()

        assert message["type"] == "stream-error"
        assert message["error"] == "invalid-message"

    def test_stop_without_session(self, client):
        with client.websocket_connect("/stream") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "stop-stream"})
            message = websocket.receive_json()

        assert message == {"type": "stream-stopped", "bytesTransferred": 0}

    def test_audio_without_session_ignored(self, client):
        with client.websocket_connect("/stream?client_id=dj-1") as websocket:
            websocket.receive_json()
            websocket.send_bytes(b"\xff\xfb" * 64)
            websocket.send_json({"type": "ping"})
            websocket.receive_json()

            stats = client.get("/stats").json()

        producer = stats["connections"]["producers"][0]
        assert producer["client_id"] == "dj-1"
        assert producer["frames_received"] == 1
        assert producer["frames_ignored"] == 1

    def test_unreachable_upstream_gives_up(self, client, start_message):
        """Test a failed connect with no retry budget ends the session."""
        with client.websocket_connect("/stream?client_id=dj-1") as websocket:
            websocket.receive_json()
            websocket.send_json(start_message)

            error = _receive_until(websocket, "stream-error")
            ready = _receive_until(websocket, "stream-bridge-ready")

        assert error["error"] == "backoff-exceeded"
        assert ready["success"] is False

    def test_duplicate_start_rejected(self, test_settings, unused_port, start_message):
        config = BridgeConfig(
            host="127.0.0.1",
            port=unused_port,
            connect_timeout=0.5,
            backoff_base=30.0,
            backoff_cap=30.0,
            max_retry_attempts=5,
        )
        app = create_app(settings=test_settings, bridge_config=config)

        with TestClient(app) as client:
            with client.websocket_connect("/stream?client_id=dj-1") as websocket:
                websocket.receive_json()
                websocket.send_json(start_message)
                _receive_until(websocket, "stream-status")

                websocket.send_json(start_message)
                error = _receive_until(websocket, "stream-error")

                assert error["error"] == "already-streaming"
                assert client.get("/health").json()["active_sessions"] == 1

    @pytest.mark.parametrize("path", ["/stream", "/"])
    def test_both_paths(self, client, path):
        with client.websocket_connect(path) as websocket:
            assert websocket.receive_json()["type"] == "bridge-connected"
