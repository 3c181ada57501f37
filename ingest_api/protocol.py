"""Control messages exchanged with producers over the ingest WebSocket.

Text frames are JSON objects tagged by ``type``. Fields may be sent flat or
nested under ``data`` (AzuraCast WebDJ sends ``hello`` that way).
"""

from dataclasses import replace
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from harbor_bridge.config import BridgeConfig
from harbor_bridge.models import Credentials, IceMetadata, StreamParameters

START_TYPES = {"hello", "start-stream"}
METADATA_TYPES = {"metadata", "update-metadata"}
STOP_TYPES = {"stop-stream"}
PING_TYPES = {"ping"}


class ProtocolViolation(ValueError):
    """A text frame that is not a usable control message."""


def _flatten(values: Any) -> Any:
    if isinstance(values, dict) and isinstance(values.get("data"), dict):
        merged = dict(values["data"])
        merged.update({k: v for k, v in values.items() if k != "data"})
        return merged
    return values


class ControlMessage(BaseModel):
    """Envelope: only the type is required."""

    type: str

    model_config = ConfigDict(extra="allow")


class IceMetadataPayload(BaseModel):
    """Producer-supplied ice-* values; unset fields keep the configured defaults."""

    name: Optional[str] = None
    description: Optional[str] = None
    genre: Optional[str] = None
    bitrate: Optional[int] = Field(default=None, ge=0)
    public: Optional[bool] = None
    url: Optional[str] = None
    samplerate: Optional[int] = Field(default=None, ge=0)
    channels: Optional[int] = Field(default=None, ge=1, le=8)

    model_config = ConfigDict(extra="ignore")

    def merged_with(self, defaults: IceMetadata) -> IceMetadata:
        return replace(defaults, **self.model_dump(exclude_none=True))


class StartStreamMessage(BaseModel):
    """``hello`` / ``start-stream``: open a relay session."""

    type: str
    user: Optional[str] = None
    password: Optional[str] = None
    mime: str = "audio/mpeg"
    mount: Optional[str] = None
    ice_metadata: Optional[IceMetadataPayload] = Field(default=None, alias="iceMetadata")

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, values: Any) -> Any:
        values = _flatten(values)
        if isinstance(values, dict):
            values = dict(values)
            if "user" not in values and "username" in values:
                values["user"] = values["username"]
            if "mime" not in values and "contentType" in values:
                values["mime"] = values["contentType"]
        return values

    def to_parameters(self, config: BridgeConfig) -> StreamParameters:
        """
        Build session parameters, falling back to configured defaults.

        Args:
            config: Relay configuration

        Returns:
            StreamParameters for a new session

        Raises:
            ProtocolViolation: If no password is available
        """
        password = self.password if self.password is not None else config.source_password
        if not password:
            raise ProtocolViolation("start-stream requires a source password")

        defaults = IceMetadata.from_config(config)
        metadata = self.ice_metadata.merged_with(defaults) if self.ice_metadata else defaults

        return StreamParameters(
            credentials=Credentials(
                username=self.user if self.user is not None else config.source_username,
                password=password,
            ),
            content_type=self.mime or "audio/mpeg",
            ice_metadata=metadata,
            mount=self.mount or None,
        )


class MetadataMessage(BaseModel):
    """Now-playing update."""

    type: str
    title: Optional[str] = None
    artist: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, values: Any) -> Any:
        return _flatten(values)


def parse_control(payload: Dict[str, Any]) -> BaseModel:
    """
    Parse a decoded JSON text frame into a typed control message.

    Args:
        payload: Decoded JSON object

    Returns:
        StartStreamMessage, MetadataMessage or a plain ControlMessage

    Raises:
        ProtocolViolation: If the frame is not a valid control message
    """
    if not isinstance(payload, dict):
        raise ProtocolViolation("Control message must be a JSON object")

    try:
        envelope = ControlMessage.model_validate(payload)
        if envelope.type in START_TYPES:
            return StartStreamMessage.model_validate(payload)
        if envelope.type in METADATA_TYPES:
            return MetadataMessage.model_validate(payload)
        return envelope
    except ValidationError as e:
        raise ProtocolViolation(str(e)) from e
