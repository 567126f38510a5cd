"""Route inbound server envelopes to their handlers."""

import time
from typing import Any, Callable, Dict, Mapping, Optional

from .. import config
from ..clock import Clock
from ..logging_config import log
from ..protocol import Envelope, ServerMessage
from ..settings import SettingsStore
from .protocol import build_manifest_reply, build_pong


Send = Callable[..., Any]


class ProtocolDispatcher:
    """Closed routing table keyed by `ServerMessage`; `dispatch` never raises."""

    def __init__(self, settings: SettingsStore, clock: Clock, send: Send) -> None:
        """Initialize ProtocolDispatcher state and collaborator references."""
        self._settings = settings
        self._clock = clock
        self._send = send
        self.last_heartbeat_ts: Optional[float] = None
        self._handlers: Dict[ServerMessage, Callable[[Envelope], None]] = {
            ServerMessage.GET: self._handle_get,
            ServerMessage.ERROR: self._handle_error,
            ServerMessage.PONG: self._handle_heartbeat,
            ServerMessage.PING: self._handle_ping,
            ServerMessage.HEARTBEAT: self._handle_heartbeat,
            ServerMessage.CONFIG: self._handle_config,
            ServerMessage.TIME: self._handle_time,
            ServerMessage.GLOBAL_SETTINGS: self._handle_default,
            ServerMessage.MAPPINGS: self._handle_default,
            ServerMessage.SETTINGS: self._handle_default,
            ServerMessage.APPS: self._handle_default,
            ServerMessage.ICON: self._handle_default,
            ServerMessage.META_DATA: self._handle_default,
            ServerMessage.MUSIC: self._handle_default,
        }

    def dispatch(self, envelope: Envelope) -> None:
        kind = envelope.server_type()
        if kind is None:
            log.debug("No handler for message type: %s", envelope.type)
            return
        handler = self._handlers.get(kind, self._handle_default)
        try:
            handler(envelope)
        except Exception:
            log.exception("Handler for %s message failed", kind.value)

    def attach(self, manager: Any, app: Optional[str] = None) -> Callable[[], None]:
        """Listen on `manager` for envelopes addressed to `app` (config.INBOUND_APP by default).

        An empty app tag routes every envelope.
        """
        target = config.INBOUND_APP if app is None else app

        def _listener(envelope: Envelope) -> None:
            if target and envelope.app != target:
                return
            self.dispatch(envelope)

        return manager.add_listener(_listener)

    def _handle_get(self, envelope: Envelope) -> None:
        if envelope.request == "manifest":
            reply = build_manifest_reply(self._settings.manifest)
            log.info("Sending manifest")
            self._send(reply, important=True)
            return
        log.debug("Unknown request type: %s", envelope.request)

    def _handle_error(self, envelope: Envelope) -> None:
        log.error("Received error: %s", envelope.payload)

    def _handle_ping(self, envelope: Envelope) -> None:
        self.last_heartbeat_ts = time.time()
        self._send(build_pong(envelope.payload), important=False)

    def _handle_heartbeat(self, envelope: Envelope) -> None:
        self.last_heartbeat_ts = time.time()

    def _handle_config(self, envelope: Envelope) -> None:
        payload = envelope.payload
        if not isinstance(payload, Mapping):
            log.warning("Ignoring %s payload of type %s", envelope.type, type(payload).__name__)
            return
        log.debug("Received config: %s", payload)
        self._settings.update_preferences(payload)

    def _handle_time(self, envelope: Envelope) -> None:
        payload = envelope.payload
        # Plain string time payloads carry no zone; only structured ones sync.
        if not isinstance(payload, Mapping):
            return
        utc_time = payload.get("utcTime")
        offset = payload.get("timezoneOffset")
        if utc_time is None or offset is None:
            return
        try:
            self._clock.sync_time(utc_time, offset)
        except (TypeError, ValueError) as error:
            log.warning("Ignoring time sync %r: %s", payload, error)

    def _handle_default(self, envelope: Envelope) -> None:
        log.debug("Unhandled message type: %s", envelope.type)
