"""Input source factory that selects a platform implementation."""

from typing import Optional

from .. import config
from .backends.base import _BaseInputSource, _NullSource, _session_kind
from .backends.pynput_source import _PynputSource
from ..logging_config import log


def _create_source_for_kind(kind: str) -> _BaseInputSource:
    """Instantiate the source implementation requested by configuration."""
    if kind == "null":
        return _NullSource()
    return _PynputSource()


def build_input_source(kind: Optional[str] = None) -> _BaseInputSource:
    """Build the raw input source with safe fallbacks to the null source."""
    requested = str(kind or config.INPUT_BACKEND or "auto").strip().lower()
    session = _session_kind()

    if requested not in ("auto", "pynput", "null"):
        log.warning("Unknown input source %r; using auto", requested)
        requested = "auto"
    if requested == "auto" and session == "unknown":
        log.info("Input source: null (no desktop session detected)")
        return _NullSource()

    source = _create_source_for_kind(requested)
    if isinstance(source, _PynputSource):
        if session == "wayland":
            log.warning("pynput only sees XWayland clients on Wayland sessions")
        try:
            if not source._ensure():
                source = _NullSource()
        except Exception:
            log.exception("Input source init failed: %s", source.name)
            source = _NullSource()

    log.info(
        "Input source: %s (session=%s, keyboard=%s, wheel=%s)",
        source.name,
        session,
        source.can_keyboard,
        source.can_wheel,
    )
    return source
