"""Persistent, self-healing WebSocket channel to the server.

`ConnectionManager` owns the socket lifecycle. It tracks an explicit
`ConnectionState`, retries with exponential backoff after unexpected drops,
queues important outbound envelopes while offline and multicasts every inbound
envelope to registered listeners. Everything runs on one asyncio loop, so the
queue and registries need no locking. Socket faults never reach callers; they
only drive state transitions and status notifications.
"""

from __future__ import annotations

import asyncio
import functools
import random
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, List, Mapping, Optional, Set

import websockets

from .. import config
from ..logging_config import log
from ..protocol import Envelope, EnvelopeError
from .protocol import decode_envelope, encode_envelope, envelope_matches


EnvelopeListener = Callable[[Envelope], Any]
StatusListener = Callable[[str], Any]
Connector = Callable[[str], Awaitable[Any]]


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class MessageDroppedError(RuntimeError):
    """Set on a send future when the envelope will never be transmitted."""


class Backoff:
    """Exponential retry delay with a cap and symmetric jitter."""

    def __init__(
        self,
        initial_s: Optional[float] = None,
        max_s: Optional[float] = None,
        factor: Optional[float] = None,
        jitter: Optional[float] = None,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self.initial_s = max(0.0, float(config.RECONNECT_INITIAL_S if initial_s is None else initial_s))
        self.max_s = max(self.initial_s, float(config.RECONNECT_MAX_S if max_s is None else max_s))
        self.factor = max(1.0, float(config.RECONNECT_FACTOR if factor is None else factor))
        self.jitter = min(1.0, max(0.0, float(config.RECONNECT_JITTER if jitter is None else jitter)))
        self._rand = rand
        self.attempts = 0

    def next_delay(self) -> float:
        """Return the delay before the next attempt and advance the curve."""
        base = min(self.max_s, self.initial_s * (self.factor ** self.attempts))
        self.attempts += 1
        spread = base * self.jitter
        delay = base + spread * (2.0 * self._rand() - 1.0)
        return max(0.0, min(self.max_s, delay))

    def reset(self) -> None:
        self.attempts = 0


@dataclass
class _OutboundEntry:
    envelope: Envelope
    important: bool
    future: asyncio.Future
    raw: str


def _default_connector(url: str) -> Awaitable[Any]:
    return websockets.connect(
        url,
        open_timeout=float(config.CONNECT_TIMEOUT_S),
        ping_interval=float(config.WS_PING_INTERVAL_S) or None,
    )


def _retrieve_exception(future: asyncio.Future) -> None:
    # Rejected sends are reported through the log; nobody has to await them.
    if not future.cancelled():
        future.exception()


def _resolve(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


def _reject(future: asyncio.Future, reason: str) -> None:
    if not future.done():
        future.set_exception(MessageDroppedError(reason))


class ConnectionManager:
    def __init__(
        self,
        url: Optional[str] = None,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        connector: Optional[Connector] = None,
        backoff: Optional[Backoff] = None,
        queue_limit: Optional[int] = None,
    ) -> None:
        """Initialize ConnectionManager state and collaborator references."""
        self.url = url or None
        self._loop = loop
        self._connector = connector or _default_connector
        self._backoff = backoff or Backoff()
        limit = config.OUTBOUND_QUEUE_MAX if queue_limit is None else queue_limit
        self._queue_limit = max(0, int(limit or 0))

        self._state = ConnectionState.DISCONNECTED
        self._socket: Any = None
        self._generation = 0
        self._connection_task: Optional[asyncio.Task] = None
        self._sender_task: Optional[asyncio.Task] = None
        self._sender_wakeup: Optional[asyncio.Event] = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._outbox: Deque[_OutboundEntry] = deque()
        self._listeners: List[EnvelopeListener] = []
        self._status_listeners: List[StatusListener] = []
        self._close_tasks: Set[asyncio.Task] = set()

    # -- state -----------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def is_reconnecting(self) -> bool:
        return self._state is ConnectionState.RECONNECTING

    @property
    def pending_count(self) -> int:
        """Number of outbound envelopes not yet transmitted."""
        return len(self._outbox)

    @property
    def retry_scheduled(self) -> bool:
        return self._retry_handle is not None

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        previous = self._state
        self._state = state
        log.info("Connection %s -> %s (%s)", previous.value, state.value, self.url or "-")
        for listener in list(self._status_listeners):
            try:
                listener(state.value)
            except Exception:
                log.exception("Status listener failed")

    # -- lifecycle -------------------------------------------------------

    def connect(self, url: Optional[str] = None) -> None:
        """Open the channel to `url` (or the last known url) without blocking."""
        target = url or self.url
        if not target:
            log.debug("connect() skipped: no url configured yet")
            return
        active = self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED)
        if active and target == self.url:
            return
        if active:
            log.info("Switching connection from %s to %s", self.url, target)
        self._cancel_retry()
        # Also abandons an in-flight retry attempt.
        self._teardown()
        self.url = target
        self._set_state(ConnectionState.CONNECTING)
        self._start_attempt()

    def disconnect(self) -> None:
        """Close the channel and stop retrying; queued important envelopes stay queued."""
        self._cancel_retry()
        self._teardown()
        self._set_state(ConnectionState.DISCONNECTED)

    def reconnect(self) -> None:
        """Drop the current channel and start a fresh attempt right away."""
        self._cancel_retry()
        self._teardown()
        self._set_state(ConnectionState.RECONNECTING)
        if not self.url:
            log.debug("reconnect() has no url; waiting for connect(url)")
            return
        self._start_attempt()

    def close(self) -> None:
        """Tear the manager down: disconnect and reject everything still queued."""
        self.disconnect()
        while self._outbox:
            entry = self._outbox.popleft()
            _reject(entry.future, "connection manager closed")

    async def aclose(self) -> None:
        """`close()` and wait until every socket it released has finished closing."""
        self.close()
        pending = [task for task in self._close_tasks if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _start_attempt(self) -> None:
        loop = self._ensure_loop()
        self._generation += 1
        self._connection_task = loop.create_task(self._run_connection(self.url, self._generation))

    def _teardown(self) -> None:
        """Invalidate the running connection and release its socket."""
        self._generation += 1
        task, self._connection_task = self._connection_task, None
        if task is not None and not task.done():
            task.cancel()
        self._stop_sender()
        socket, self._socket = self._socket, None
        if socket is not None:
            close_task = self._ensure_loop().create_task(self._close_quietly(socket))
            self._close_tasks.add(close_task)
            close_task.add_done_callback(self._close_tasks.discard)
        self._drop_unimportant("connection closed")

    def _cancel_retry(self) -> None:
        handle, self._retry_handle = self._retry_handle, None
        if handle is not None:
            handle.cancel()

    def _schedule_retry(self) -> None:
        delay = self._backoff.next_delay()
        log.info("Reconnecting to %s in %.1fs (attempt %d)", self.url, delay, self._backoff.attempts)
        self._retry_handle = self._ensure_loop().call_later(delay, self._retry, self._generation)

    def _retry(self, generation: int) -> None:
        self._retry_handle = None
        if generation != self._generation or self._state is not ConnectionState.RECONNECTING:
            return
        self._start_attempt()

    def _connection_lost(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._connection_task = None
        self._stop_sender()
        self._socket = None
        self._drop_unimportant("connection lost")
        self._set_state(ConnectionState.RECONNECTING)
        self._schedule_retry()

    @staticmethod
    async def _close_quietly(socket: Any) -> None:
        try:
            await socket.close()
        except Exception:
            log.debug("Socket close failed", exc_info=True)

    async def _run_connection(self, url: str, generation: int) -> None:
        try:
            socket = await self._connector(url)
        except asyncio.CancelledError:
            raise
        except Exception as error:
            if generation == self._generation:
                log.info("Connection to %s failed (%s)", url, str(error) or error.__class__.__name__)
                self._connection_lost(generation)
            return

        if generation != self._generation:
            await self._close_quietly(socket)
            return

        self._socket = socket
        self._set_state(ConnectionState.CONNECTED)
        if generation != self._generation:
            # A status listener tore the connection down re-entrantly.
            return
        self._start_sender(socket, generation)
        self._backoff.reset()

        try:
            async for raw in socket:
                if generation != self._generation:
                    break
                self._handle_frame(raw)
        except asyncio.CancelledError:
            raise
        except Exception as error:
            log.info("Connection to %s closed (%s)", url, str(error) or error.__class__.__name__)
        self._connection_lost(generation)

    # -- outbound --------------------------------------------------------

    def send(self, envelope: Envelope, important: bool = True) -> asyncio.Future:
        """Transmit `envelope` without blocking and return its completion future.

        While offline, important envelopes are queued and flushed in order on
        the next successful connect; unimportant ones are dropped and the
        future is rejected with `MessageDroppedError`.
        """
        future = self._ensure_loop().create_future()
        future.add_done_callback(_retrieve_exception)

        if self._state is not ConnectionState.CONNECTED and not important:
            log.warning("Dropped %s message while %s", envelope.type, self._state.value)
            _reject(future, f"not connected ({self._state.value})")
            return future

        entry = _OutboundEntry(envelope=envelope, important=bool(important), future=future, raw=encode_envelope(envelope))
        if self._queue_limit and len(self._outbox) >= self._queue_limit:
            evicted = self._outbox.popleft()
            log.warning("Outbound queue full (%d); dropped oldest %s message", self._queue_limit, evicted.envelope.type)
            _reject(evicted.future, "outbound queue overflow")
        self._outbox.append(entry)
        if self._sender_wakeup is not None:
            self._sender_wakeup.set()
        elif self._state is not ConnectionState.CONNECTED:
            log.debug("Queued %s message while %s", envelope.type, self._state.value)
        return future

    def _drop_unimportant(self, reason: str) -> None:
        kept: Deque[_OutboundEntry] = deque()
        for entry in self._outbox:
            if entry.important:
                kept.append(entry)
            else:
                log.warning("Dropped %s message: %s", entry.envelope.type, reason)
                _reject(entry.future, reason)
        self._outbox = kept

    def _start_sender(self, socket: Any, generation: int) -> None:
        self._sender_wakeup = asyncio.Event()
        self._sender_task = self._ensure_loop().create_task(self._drain_outbox(socket, generation))

    def _stop_sender(self) -> None:
        self._sender_wakeup = None
        task, self._sender_task = self._sender_task, None
        if task is not None and not task.done():
            task.cancel()

    async def _drain_outbox(self, socket: Any, generation: int) -> None:
        """Transmit queued envelopes strictly in FIFO order while connected."""
        wakeup = self._sender_wakeup
        while generation == self._generation and wakeup is not None:
            while self._outbox and generation == self._generation:
                entry = self._outbox[0]
                try:
                    await socket.send(entry.raw)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    # Entry stays at the head; the receive loop notices the drop.
                    log.debug("Send of %s failed; holding for reconnect", entry.envelope.type, exc_info=True)
                    return
                if self._outbox and self._outbox[0] is entry:
                    self._outbox.popleft()
                _resolve(entry.future)
            wakeup.clear()
            await wakeup.wait()

    # -- inbound ---------------------------------------------------------

    def _handle_frame(self, raw: Any) -> None:
        try:
            envelope = decode_envelope(raw)
        except EnvelopeError as error:
            log.warning("Dropped malformed frame: %s", error)
            return
        self._dispatch(envelope)

    def _dispatch(self, envelope: Envelope) -> None:
        for listener in list(self._listeners):
            try:
                listener(envelope)
            except Exception:
                log.exception("Listener failed for %s message", envelope.type)

    def add_listener(self, listener: EnvelopeListener) -> Callable[[], None]:
        """Register `listener` for every inbound envelope; returns an unsubscribe callable."""
        if listener not in self._listeners:
            self._listeners.append(listener)
        return functools.partial(self.remove_listener, listener)

    def remove_listener(self, listener: EnvelopeListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def once(self, match: Mapping[str, Any], listener: EnvelopeListener) -> Callable[[], None]:
        """Call `listener` for the first envelope matching `match`, then unregister."""
        wanted = dict(match or {})

        def _wrapped(envelope: Envelope) -> None:
            if not envelope_matches(envelope, wanted):
                return
            self.remove_listener(_wrapped)
            listener(envelope)

        return self.add_listener(_wrapped)

    def add_status_listener(self, listener: StatusListener) -> Callable[[], None]:
        """Register `listener` for state transitions; it receives the state value."""
        if listener not in self._status_listeners:
            self._status_listeners.append(listener)
        return functools.partial(self.remove_status_listener, listener)

    def remove_status_listener(self, listener: StatusListener) -> None:
        try:
            self._status_listeners.remove(listener)
        except ValueError:
            pass
