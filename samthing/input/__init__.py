"""Input subsystem: press classification, wheel detents and the handler chain."""

from .backend import build_input_source
from .buttons import EventMode, HandlerResult
from .press import KeyPhase, KeyPressStateMachine
from .router import InputEventRouter
from .wheel import WheelAccumulator, wheel_step

__all__ = [
    "build_input_source",
    "EventMode",
    "HandlerResult",
    "KeyPhase",
    "KeyPressStateMachine",
    "InputEventRouter",
    "WheelAccumulator",
    "wheel_step",
]
