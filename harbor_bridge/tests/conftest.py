"""
Pytest configuration and fixtures for Harbor relay tests.

The ``harbor`` fixture runs a scripted fake broadcast server on localhost:
each accepted connection plays the next scripted response (or stays
silent), and the server records the SOURCE request and every audio byte
it receives.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest
from prometheus_client import CollectorRegistry

from harbor_bridge.config import BridgeConfig
from harbor_bridge.metrics import BridgeMetrics
from harbor_bridge.models import Credentials, IceMetadata, StreamParameters

SILENT = None
# Close the socket right after reading the request
HANG_UP = b""


class RecordedConnection:
    """What the fake server saw on one connection."""

    def __init__(self, writer: asyncio.StreamWriter):
        self.writer = writer
        self.request = b""
        self.audio = bytearray()
        self.closed = False

    @property
    def request_lines(self) -> List[str]:
        return self.request.decode("latin-1").split("\r\n")

    def drop(self) -> None:
        """Close the connection from the server side."""
        self.writer.close()


class FakeHarbor:
    """Scripted Icecast-style SOURCE endpoint."""

    ACCEPT = b"HTTP/1.0 200 OK\r\n\r\n"
    ICY_ACCEPT = b"ICY 200 OK\r\n\r\n"
    UNAUTHORIZED = b"HTTP/1.0 401 Unauthorized\r\n\r\n"
    FORBIDDEN = b"HTTP/1.0 403 Forbidden\r\n\r\n"
    NOT_FOUND = b"HTTP/1.0 404 File Not Found\r\n\r\n"
    SILENT = SILENT
    HANG_UP = HANG_UP

    def __init__(self):
        self.responses: List[Optional[bytes]] = []
        self.default: Optional[bytes] = SILENT
        self.connections: List[RecordedConnection] = []
        self.port: Optional[int] = None
        self._server: Optional[asyncio.AbstractServer] = None

    def script(self, *responses: Optional[bytes], default: Optional[bytes] = SILENT) -> None:
        """Responses for the next connections, in order."""
        self.responses = list(responses)
        self.default = default

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        for connection in self.connections:
            connection.writer.close()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        connection = RecordedConnection(writer)
        index = len(self.connections)
        self.connections.append(connection)
        response = self.responses[index] if index < len(self.responses) else self.default

        buffer = bytearray()
        try:
            while b"\r\n\r\n" not in buffer:
                data = await reader.read(4096)
                if not data:
                    return
                buffer.extend(data)

            head, _, rest = bytes(buffer).partition(b"\r\n\r\n")
            connection.request = head + b"\r\n\r\n"
            connection.audio.extend(rest)

            if response == HANG_UP:
                return
            if response is not None:
                writer.write(response)
                await writer.drain()
                if b" 200 " not in response:
                    return

            while True:
                data = await reader.read(4096)
                if not data:
                    return
                connection.audio.extend(data)
        except (ConnectionError, OSError):
            return
        finally:
            connection.closed = True
            writer.close()

    @property
    def total_audio(self) -> bytes:
        return b"".join(bytes(c.audio) for c in self.connections)


class MessageRecorder:
    """Notifier collecting producer-facing messages."""

    def __init__(self):
        self.messages: List[Dict[str, Any]] = []

    async def __call__(self, payload: Dict[str, Any]) -> None:
        self.messages.append(payload)

    def types(self) -> List[str]:
        return [m["type"] for m in self.messages]

    def of_type(self, message_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.messages if m["type"] == message_type]

    def statuses(self) -> List[str]:
        return [m["status"] for m in self.of_type("stream-status")]


async def _wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
async def harbor():
    """Running fake broadcast server."""
    server = FakeHarbor()
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
def wait_until():
    """Poll a predicate until it holds."""
    return _wait_until


@pytest.fixture
def recorder() -> MessageRecorder:
    return MessageRecorder()


@pytest.fixture
def fast_config(harbor: FakeHarbor) -> BridgeConfig:
    """Configuration pointed at the fake server with short timings."""
    return BridgeConfig(
        host="127.0.0.1",
        port=harbor.port,
        mount_points=["/", "/live"],
        connect_timeout=1.0,
        acceptance_timeout=0.2,
        mount_retry_delay=0.01,
        backoff_base=0.01,
        backoff_multiplier=2.0,
        backoff_cap=0.05,
        max_retry_attempts=3,
        status_interval=0.05,
        stop_timeout=1.0,
        queue_max_chunks=5,
    )


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(username="source", password="hackme")


@pytest.fixture
def stream_params(credentials: Credentials) -> StreamParameters:
    return StreamParameters(
        credentials=credentials,
        content_type="audio/mpeg",
        ice_metadata=IceMetadata(name="Test FM", description="Tests", genre="Rock", bitrate=128),
    )


@pytest.fixture
def metrics() -> BridgeMetrics:
    """Metrics on a private registry."""
    return BridgeMetrics(registry=CollectorRegistry())
