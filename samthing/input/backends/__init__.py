"""Platform input source implementations."""

from .base import _BaseInputSource, _NullSource, _session_kind
from .pynput_source import _PynputSource, key_code

__all__ = [
    "_BaseInputSource",
    "_NullSource",
    "_session_kind",
    "_PynputSource",
    "key_code",
]
