"""WebSocket channel, wire helpers and inbound dispatch."""

from .connection import Backoff, ConnectionManager, ConnectionState, MessageDroppedError
from .dispatcher import ProtocolDispatcher

__all__ = [
    "Backoff",
    "ConnectionManager",
    "ConnectionState",
    "MessageDroppedError",
    "ProtocolDispatcher",
]
