"""
Pytest configuration and shared fixtures for integration tests.

``threaded_harbor`` is a fake broadcast server running in its own thread, so
it can serve sessions that live on the TestClient's event loop.
"""

import socket
import socketserver
import threading
import time
from typing import Callable, List, Optional

import pytest


class HarborRecord:
    """Request and audio bytes seen on one connection."""

    def __init__(self):
        self.request = b""
        self.audio = bytearray()
        self.closed = threading.Event()

    @property
    def request_line(self) -> str:
        return self.request.split(b"\r\n", 1)[0].decode("latin-1")

    def header(self, name: str) -> Optional[str]:
        for line in self.request.decode("latin-1").split("\r\n")[1:]:
            key, _, value = line.partition(":")
            if key.strip().lower() == name.lower():
                return value.strip()
        return None


class _HarborHandler(socketserver.BaseRequestHandler):
    def handle(self):
        harbor: "ThreadedHarbor" = self.server.harbor
        record, response = harbor.register()
        sock = self.request
        sock.settimeout(0.2)

        try:
            buffer = b""
            while b"\r\n\r\n" not in buffer:
                data = self._recv(sock, harbor)
                if not data:
                    return
                buffer += data

            head, _, rest = buffer.partition(b"\r\n\r\n")
            with harbor.lock:
                record.request = head + b"\r\n\r\n"
                record.audio.extend(rest)

            if response is not None:
                sock.sendall(response)
                if b" 200 " not in response:
                    return

            while True:
                data = self._recv(sock, harbor)
                if not data:
                    return
                with harbor.lock:
                    record.audio.extend(data)
        except OSError:
            return
        finally:
            record.closed.set()

    @staticmethod
    def _recv(sock: socket.socket, harbor: "ThreadedHarbor") -> bytes:
        while not harbor.stopping.is_set():
            try:
                return sock.recv(4096)
            except socket.timeout:
                continue
        return b""


class ThreadedHarbor:
    """Scripted SOURCE endpoint served from a background thread."""

    def __init__(self):
        self.responses: List[Optional[bytes]] = []
        self.records: List[HarborRecord] = []
        self.lock = threading.Lock()
        self.stopping = threading.Event()

        self._server = socketserver.ThreadingTCPServer(("127.0.0.1", 0), _HarborHandler)
        self._server.daemon_threads = True
        self._server.harbor = self
        self.port = self._server.server_address[1]
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)

    def script(self, *responses: Optional[bytes]) -> None:
        """Responses for the next connections; later ones stay silent."""
        self.responses = list(responses)

    def register(self):
        record = HarborRecord()
        with self.lock:
            index = len(self.records)
            self.records.append(record)
            response = self.responses[index] if index < len(self.responses) else None
        return record, response

    def audio(self, index: int = 0) -> bytes:
        with self.lock:
            return bytes(self.records[index].audio)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self.stopping.set()
        self._server.shutdown()
        self._server.server_close()


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("Condition not met before timeout")
        time.sleep(0.01)


@pytest.fixture
def threaded_harbor():
    """Running threaded fake broadcast server."""
    harbor = ThreadedHarbor()
    harbor.start()
    yield harbor
    harbor.stop()


@pytest.fixture
def poll():
    """Poll a predicate until it holds."""
    return wait_for
