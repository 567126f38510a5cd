"""Ordered, consuming handler chain for normalized input events."""

from typing import Any, Callable, Dict, List, Optional, Union

from ..logging_config import log
from .buttons import DIRECTIONAL_STEPS, PRESS_MODES, WHEEL_CODE, EventMode, HandlerResult


KeyHandler = Callable[[str, Optional[EventMode]], Union[HandlerResult, bool, None]]
RotationListener = Callable[[int], Any]


def _is_consumed(result: Any) -> bool:
    return result is HandlerResult.CONSUMED or result is True


class InputEventRouter:
    """Dispatch button events and wheel detents to registered key handlers.

    Handlers run in registration order; the first one returning
    `HandlerResult.CONSUMED` (or True) stops propagation and suppresses the
    default behaviour. Unconsumed arrow presses and wheel detents move the
    rotation counter.
    """

    def __init__(self) -> None:
        """Initialize InputEventRouter state and collaborator references."""
        self._handlers: Dict[str, KeyHandler] = {}
        self._wheel_rotation = 0
        self._rotation_listeners: List[RotationListener] = []

    @property
    def handler_ids(self) -> List[str]:
        return list(self._handlers)

    def register_key_handler(self, handler_id: str, handler: KeyHandler) -> Callable[[], None]:
        """Register `handler` under `handler_id`, replacing any handler with that id in place.

        The returned callable unregisters it, unless the id has since been
        taken over by another handler.
        """
        self._handlers[handler_id] = handler

        def _unregister() -> None:
            if self._handlers.get(handler_id) is handler:
                del self._handlers[handler_id]

        return _unregister

    def unregister_key_handler(self, handler_id: str) -> None:
        self._handlers.pop(handler_id, None)

    def _offer(self, code: str, mode: Optional[EventMode]) -> bool:
        for handler_id, handler in list(self._handlers.items()):
            try:
                result = handler(code, mode)
            except Exception:
                log.exception("Key handler %s failed for %s", handler_id, code)
                continue
            if _is_consumed(result):
                return True
        return False

    def handle_button(self, code: str, mode: Optional[EventMode] = None) -> bool:
        """Route a button event; returns True when a handler consumed it."""
        if self._offer(code, mode):
            return True
        if mode is not None and mode not in PRESS_MODES:
            return False
        step = DIRECTIONAL_STEPS.get(code)
        if step:
            self.set_wheel_rotation(lambda prev: prev + step)
        return False

    def handle_wheel(self, delta: int) -> bool:
        """Route a wheel detent; unconsumed detents move the rotation counter."""
        if not delta:
            return False
        mode = EventMode.SCROLL_DOWN if delta > 0 else EventMode.SCROLL_UP
        if self._offer(WHEEL_CODE, mode):
            return True
        self.set_wheel_rotation(lambda prev: prev + delta)
        return False

    @property
    def wheel_rotation(self) -> int:
        return self._wheel_rotation

    def set_wheel_rotation(self, value: Union[int, Callable[[int], int]]) -> int:
        """Set the rotation counter to `value`, or to `value(previous)` when callable."""
        new_value = int(value(self._wheel_rotation) if callable(value) else value)
        if new_value != self._wheel_rotation:
            self._wheel_rotation = new_value
            for listener in list(self._rotation_listeners):
                try:
                    listener(new_value)
                except Exception:
                    log.exception("Rotation listener failed")
        return self._wheel_rotation

    def add_rotation_listener(self, listener: RotationListener) -> Callable[[], None]:
        self._rotation_listeners.append(listener)

        def _remove() -> None:
            try:
                self._rotation_listeners.remove(listener)
            except ValueError:
                pass

        return _remove
