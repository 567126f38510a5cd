"""Composition root: owns the channel, the dispatcher and the input pipeline."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, List, Optional

from . import config
from .clock import Clock
from .input.backends.base import _BaseInputSource
from .input.buttons import EventMode, HandlerResult
from .input.press import KeyPressStateMachine, Scheduler
from .input.router import InputEventRouter
from .input.wheel import WheelAccumulator
from .logging_config import log
from .settings import SettingsStore
from .ws.connection import ConnectionManager, Connector
from .ws.dispatcher import ProtocolDispatcher


class SamThingClient:
    """Explicitly constructed services for one device client.

    `start()` must run on the event loop that will own every service; raw
    input callbacks from listener threads are marshalled onto that loop.
    """

    def __init__(
        self,
        settings: SettingsStore,
        *,
        clock: Optional[Clock] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        connector: Optional[Connector] = None,
        input_source: Optional[_BaseInputSource] = None,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        """Initialize SamThingClient state and collaborator references."""
        self.settings = settings
        self.clock = clock or Clock()
        self._loop = loop
        self.connection = ConnectionManager(settings.websocket_url(), loop=loop, connector=connector)
        self.dispatcher = ProtocolDispatcher(settings, self.clock, self.connection.send)
        self.router = InputEventRouter()
        self.presses = KeyPressStateMachine(self.router.handle_button, scheduler=scheduler)
        self.wheel = WheelAccumulator(self.router.handle_wheel)
        self._input_source = input_source
        self._cleanups: List[Callable[[], Any]] = []
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        self.settings.set_sender(self.connection.send)
        self._cleanups.append(lambda: self.settings.set_sender(None))
        self._cleanups.append(self.dispatcher.attach(self.connection))
        self._cleanups.append(self.settings.subscribe(self._on_settings_changed))
        if config.DEBUG:
            self._cleanups.append(self.router.register_key_handler("debug-all", _log_button_event))

        url = self.settings.websocket_url()
        if url:
            self.connection.connect(url)
        else:
            log.debug("WebSocket URL not ready yet, waiting...")

        source = self._input_source
        if source is not None:
            started = source.start(
                self._threadsafe(self.presses.key_down),
                self._threadsafe(self.presses.key_up),
                self._threadsafe(self.wheel.scroll),
            )
            if not started:
                log.warning("Input source %s did not start; hardware input disabled", source.name)

    def stop(self) -> None:
        """Stop input, cancel long-press timers, detach listeners and close the channel."""
        if not self._started:
            return
        self._started = False
        if self._input_source is not None:
            self._input_source.stop()
        self.presses.teardown()
        cleanups, self._cleanups = self._cleanups, []
        for cleanup in reversed(cleanups):
            cleanup()
        self.connection.close()

    async def aclose(self) -> None:
        """`stop()` and wait for the channel's close handshake."""
        self.stop()
        await self.connection.aclose()

    def _threadsafe(self, callback: Callable[..., Any]) -> Callable[..., None]:
        loop = self._loop

        def _deliver(*args: Any) -> None:
            # Input queued by a listener thread may land after stop().
            if self._started:
                callback(*args)

        def _marshal(*args: Any) -> None:
            loop.call_soon_threadsafe(_deliver, *args)

        return _marshal

    def _on_settings_changed(self, settings: SettingsStore) -> None:
        url = settings.websocket_url()
        if not url:
            log.debug("WebSocket URL not ready yet, waiting...")
            return
        if url != self.connection.url:
            log.info("WebSocket URL changed to %s, reconnecting", url)
            self.connection.disconnect()
            self.connection.connect(url)


def _log_button_event(code: str, mode: Optional[EventMode]) -> HandlerResult:
    log.debug("Button %s (%s)", code, mode.value if mode is not None else "-")
    return HandlerResult.PASSTHROUGH
