"""Global keyboard and wheel capture through pynput."""

from typing import Any, Callable, List

from .base import KeyCallback, WheelCallback, _BaseInputSource
from ...logging_config import log


_NAMED_KEYS = {
    "enter": "Enter",
    "esc": "Escape",
    "up": "ArrowUp",
    "down": "ArrowDown",
    "left": "ArrowLeft",
    "right": "ArrowRight",
    "space": "Space",
    "backspace": "Backspace",
    "tab": "Tab",
    "delete": "Delete",
    "home": "Home",
    "end": "End",
    "page_up": "PageUp",
    "page_down": "PageDown",
}


def key_code(key: Any) -> str:
    """Normalize a pynput Key/KeyCode to a device code such as `Digit1`, `KeyM` or `Enter`."""
    char = getattr(key, "char", None)
    if char:
        if len(char) == 1 and char.isdigit():
            return f"Digit{char}"
        if len(char) == 1 and char.isalpha():
            return f"Key{char.upper()}"
        return str(char)
    name = getattr(key, "name", None)
    if name:
        return _NAMED_KEYS.get(str(name), str(name))
    return ""


class _PynputSource(_BaseInputSource):
    """Capture keys and the scroll wheel through pynput listeners."""

    name = "pynput"
    can_keyboard = True
    can_wheel = True

    def __init__(self) -> None:
        """Initialize source state and lazy import sentinels."""
        self._keyboard = None
        self._mouse = None
        self._loaded = False
        self._listeners: List[Any] = []

    def _ensure(self) -> bool:
        """Lazy-load `pynput` once and report source readiness."""
        if self._loaded:
            return self._keyboard is not None and self._mouse is not None
        self._loaded = True
        try:
            from pynput import keyboard, mouse

            self._keyboard = keyboard
            self._mouse = mouse
            return True
        except Exception as error:
            log.warning("pynput input source unavailable: %s", error)
            self._keyboard = None
            self._mouse = None
            return False

    @staticmethod
    def _guard(callback: Callable[..., Any], *args: Any) -> None:
        # An exception escaping a pynput callback stops its listener thread.
        try:
            callback(*args)
        except Exception:
            log.exception("Input callback failed")

    def start(self, on_key_down: KeyCallback, on_key_up: KeyCallback, on_wheel: WheelCallback) -> bool:
        """Start keyboard and mouse listeners."""
        if not self._ensure():
            return False
        if self._listeners:
            return True

        def _on_press(key: Any) -> None:
            code = key_code(key)
            if code:
                self._guard(on_key_down, code)

        def _on_release(key: Any) -> None:
            code = key_code(key)
            if code:
                self._guard(on_key_up, code)

        def _on_scroll(_x: int, _y: int, dx: int, dy: int) -> None:
            # pynput reports positive dy for scrolling up.
            self._guard(on_wheel, float(dx), float(-dy))

        kb_listener = self._keyboard.Listener(on_press=_on_press, on_release=_on_release)
        mouse_listener = self._mouse.Listener(on_scroll=_on_scroll)
        kb_listener.daemon = True
        mouse_listener.daemon = True
        kb_listener.start()
        mouse_listener.start()
        self._listeners = [kb_listener, mouse_listener]
        return True

    def stop(self) -> None:
        """Stop listener threads."""
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            try:
                listener.stop()
            except Exception:
                log.debug("pynput listener stop failed", exc_info=True)
