"""WebSocket connection manager for producers."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)


@dataclass
class ProducerConnection:
    """One connected producer and its frame counters."""

    client_id: str
    subprotocol: Optional[str] = None
    connected_at: datetime = field(default_factory=datetime.utcnow)
    frames_received: int = 0
    bytes_received: int = 0
    frames_ignored: int = 0


class ConnectionManager:
    """Manages producer WebSocket connections."""

    def __init__(self):
        self.active_connections: Dict[WebSocket, ProducerConnection] = {}

    async def connect(
        self, websocket: WebSocket, client_id: str, subprotocol: Optional[str] = None
    ) -> ProducerConnection:
        """Accept and register a new WebSocket connection.

        Args:
            websocket: WebSocket connection.
            client_id: Producer identity.
            subprotocol: Negotiated subprotocol, if any.

        Returns:
            ProducerConnection: Registered connection record.
        """
        await websocket.accept(subprotocol=subprotocol)
        connection = ProducerConnection(client_id=client_id, subprotocol=subprotocol)
        self.active_connections[websocket] = connection
        logger.info(
            f"Producer connected: {client_id}"
            + (f" (subprotocol: {subprotocol})" if subprotocol else "")
        )
        return connection

    def disconnect(self, websocket: WebSocket) -> None:
        """Remove a WebSocket connection.

        Args:
            websocket: WebSocket connection to remove.
        """
        connection = self.active_connections.pop(websocket, None)
        if connection is not None:
            logger.info(
                f"Producer disconnected: {connection.client_id} "
                f"({connection.frames_received} frames, {connection.bytes_received} bytes)"
            )

    def record_frame(self, websocket: WebSocket, size: int, accepted: bool) -> None:
        connection = self.active_connections.get(websocket)
        if connection is None:
            return
        connection.frames_received += 1
        connection.bytes_received += size
        if not accepted:
            connection.frames_ignored += 1

    async def send_personal_message(self, message: dict, websocket: WebSocket) -> None:
        """Send a message to a specific client.

        Args:
            message: Message to send.
            websocket: Target WebSocket connection.
        """
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.error(f"Error sending message to producer: {e}")

    def get_stats(self) -> dict:
        return {
            "connected_producers": len(self.active_connections),
            "producers": [
                {
                    "client_id": c.client_id,
                    "subprotocol": c.subprotocol,
                    "connected_at": c.connected_at.isoformat(),
                    "frames_received": c.frames_received,
                    "bytes_received": c.bytes_received,
                    "frames_ignored": c.frames_ignored,
                }
                for c in self.active_connections.values()
            ],
        }
