"""Shared base contracts and helpers for raw input sources."""

import os
import sys
from typing import Any, Callable


KeyCallback = Callable[[str], Any]
WheelCallback = Callable[[float, float], Any]


def _session_kind() -> str:
    """Detect the active desktop session kind."""
    if os.name == "nt":
        return "windows"
    if sys.platform == "darwin":
        return "macos"
    xdg_type = (os.environ.get("XDG_SESSION_TYPE") or "").strip().lower()
    if xdg_type in ("wayland", "x11"):
        return xdg_type
    if os.environ.get("WAYLAND_DISPLAY"):
        return "wayland"
    if os.environ.get("DISPLAY"):
        return "x11"
    return "unknown"


class _BaseInputSource:
    """Define the raw input contract consumed by the client.

    A started source reports key codes on press and release and wheel
    signals as (dx, dy) with positive dy meaning "scroll down". Callbacks may
    be invoked from a listener thread.
    """

    name = "base"
    can_keyboard = False
    can_wheel = False

    def start(self, on_key_down: KeyCallback, on_key_up: KeyCallback, on_wheel: WheelCallback) -> bool:
        """Begin delivering input; returns False when the source cannot run."""
        return False

    def stop(self) -> None:
        """Stop delivering input."""
        pass


class _NullSource(_BaseInputSource):
    """Represent a fully unavailable input source."""

    name = "null"
