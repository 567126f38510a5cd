"""Message types and the envelope shared by the connection and dispatch layers."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class ServerMessage(str, Enum):
    """Inbound envelope types the server may send to a device."""

    GET = "get"
    ERROR = "error"
    PONG = "pong"
    PING = "ping"
    HEARTBEAT = "heartbeat"
    CONFIG = "configuration"
    TIME = "time"
    GLOBAL_SETTINGS = "global_settings"
    MAPPINGS = "button_mappings"
    SETTINGS = "settings"
    APPS = "apps"
    ICON = "icon"
    META_DATA = "meta_data"
    MUSIC = "music"


class ClientMessage(str, Enum):
    """Outbound envelope types a device sends to the server."""

    MANIFEST = "manifest"
    PING = "ping"
    PONG = "pong"
    HEARTBEAT = "heartbeat"


class EnvelopeError(ValueError):
    """Raised when a wire frame cannot be decoded into an envelope."""


class Envelope(BaseModel):
    """Typed message wrapper: a kind, optional routing tags and a payload."""

    model_config = ConfigDict(frozen=True, extra="allow")

    type: str
    app: Optional[str] = None
    request: Optional[str] = None
    payload: Any = None

    @field_validator("type", mode="before")
    @classmethod
    def _type_value(cls, value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        return value

    @field_validator("type")
    @classmethod
    def _type_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("envelope type must not be empty")
        return value

    def server_type(self) -> Optional[ServerMessage]:
        """Return the inbound message kind, or None for unknown types."""
        try:
            return ServerMessage(self.type)
        except ValueError:
            return None
