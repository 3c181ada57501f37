"""Producer WebSocket: control messages in text frames, audio in binary frames."""

import json
import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from harbor_bridge.errors import AlreadyStreaming
from harbor_bridge.registry import SessionRegistry
from harbor_bridge.session import RelaySession
from ingest_api.config import Settings
from ingest_api.connections import ConnectionManager
from ingest_api.protocol import (
    PING_TYPES,
    STOP_TYPES,
    MetadataMessage,
    ProtocolViolation,
    StartStreamMessage,
    parse_control,
)

logger = logging.getLogger(__name__)
router = APIRouter()


class ProducerHandler:
    """Handles the frames of one producer connection."""

    def __init__(
        self,
        websocket: WebSocket,
        client_id: str,
        settings: Settings,
        registry: SessionRegistry,
        connections: ConnectionManager,
    ):
        self.websocket = websocket
        self.client_id = client_id
        self.settings = settings
        self.registry = registry
        self.connections = connections
        self.session: Optional[RelaySession] = None
        self.closed = False

    async def notify(self, message: dict) -> None:
        if self.closed:
            return
        await self.connections.send_personal_message(message, self.websocket)

    async def send_error(self, error: str, message: str) -> None:
        await self.notify({"type": "stream-error", "error": error, "message": message})

    @property
    def streaming(self) -> bool:
        return self.session is not None and not self.session.is_finished

    def handle_audio(self, data: bytes) -> None:
        """One binary frame is one chunk."""
        if not self.streaming:
            self.connections.record_frame(self.websocket, len(data), accepted=False)
            logger.debug(f"Ignoring {len(data)} byte frame from {self.client_id}: no active session")
            return
        if len(data) > self.settings.max_frame_bytes:
            self.connections.record_frame(self.websocket, len(data), accepted=False)
            logger.warning(f"Dropping oversized {len(data)} byte frame from {self.client_id}")
            return

        accepted = self.session.push_audio(data)
        self.connections.record_frame(self.websocket, len(data), accepted=accepted)

    async def handle_text(self, text: str) -> None:
        try:
            control = parse_control(json.loads(text))
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON received from producer {self.client_id}")
            await self.send_error("invalid-message", "Message is not valid JSON")
            return
        except ProtocolViolation as e:
            logger.warning(f"Invalid control message from {self.client_id}: {e}")
            await self.send_error("invalid-message", str(e))
            return

        logger.debug(f"Control message from {self.client_id}: {control.type}")

        if isinstance(control, StartStreamMessage):
            await self.start_stream(control)
        elif isinstance(control, MetadataMessage):
            self.update_metadata(control)
        elif control.type in STOP_TYPES:
            await self.stop_stream()
        elif control.type in PING_TYPES:
            await self.notify(
                {
                    "type": "pong",
                    "timestamp": datetime.utcnow().isoformat(),
                    "active": self.streaming,
                }
            )
        else:
            logger.info(f"Unknown control message from {self.client_id}: {control.type}")

    async def start_stream(self, control: StartStreamMessage) -> None:
        try:
            params = control.to_parameters(self.registry.config)
        except ProtocolViolation as e:
            await self.send_error("invalid-message", str(e))
            return

        try:
            self.session = await self.registry.start(self.client_id, params, self.notify)
        except AlreadyStreaming as e:
            await self.send_error(e.code, str(e))

    def update_metadata(self, control: MetadataMessage) -> None:
        if not self.streaming:
            logger.debug(f"Metadata from {self.client_id} ignored: no active session")
            return
        self.session.update_metadata(control.title, control.artist)

    async def stop_stream(self) -> None:
        if self.session is None:
            await self.notify({"type": "stream-stopped", "bytesTransferred": 0})
            return
        session, self.session = self.session, None
        if not await self.registry.stop(self.client_id, session):
            # Already ended on its own; its final status was sent then
            logger.debug(f"Stop from {self.client_id}: session already finished")

    async def close(self) -> None:
        self.closed = True
        if self.session is not None:
            await self.registry.stop(self.client_id, self.session)
            self.session = None


def _select_subprotocol(websocket: WebSocket, preferred: str) -> Optional[str]:
    offered = websocket.scope.get("subprotocols") or []
    return preferred if preferred in offered else None


@router.websocket("/stream")
@router.websocket("/")
async def ingest_endpoint(websocket: WebSocket, client_id: Optional[str] = Query(None)):
    """Producer ingest endpoint.

    Text frames carry JSON control messages (hello / start-stream, metadata,
    stop-stream, ping); binary frames carry encoded audio, one chunk each.

    Args:
        websocket: WebSocket connection.
        client_id: Optional producer identity.
    """
    state = websocket.app.state
    settings: Settings = state.settings
    connections: ConnectionManager = state.connections

    if not client_id:
        client_id = str(uuid.uuid4())

    subprotocol = _select_subprotocol(websocket, settings.subprotocol)
    await connections.connect(websocket, client_id, subprotocol)
    handler = ProducerHandler(websocket, client_id, settings, state.registry, connections)

    await handler.notify(
        {"type": "bridge-connected", "clientId": client_id, "upstream": state.registry.config.target}
    )

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            if message.get("bytes") is not None:
                handler.handle_audio(message["bytes"])
            elif message.get("text") is not None:
                await handler.handle_text(message["text"])

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error for {client_id}: {e}", exc_info=True)
    finally:
        connections.disconnect(websocket)
        await handler.close()
