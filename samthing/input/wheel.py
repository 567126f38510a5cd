"""Rotary wheel detents from two-axis scroll signals."""

from typing import Any, Callable, Optional


def wheel_step(dx: float, dy: float) -> int:
    """Return the detent for one scroll signal: +1, -1, or 0 for an empty signal.

    The axis with the larger magnitude wins; ties go to the vertical axis.
    Deltas follow the browser convention (positive dy scrolls down).
    """
    dx = float(dx or 0)
    dy = float(dy or 0)
    if dx == 0 and dy == 0:
        return 0
    value = dx if abs(dx) > abs(dy) else dy
    return 1 if value > 0 else -1


class WheelAccumulator:
    """Forward one ±1 delta per qualifying scroll signal, without coalescing."""

    def __init__(self, on_delta: Optional[Callable[[int], Any]] = None) -> None:
        self._on_delta = on_delta

    def scroll(self, dx: float, dy: float) -> int:
        step = wheel_step(dx, dy)
        if step and self._on_delta is not None:
            self._on_delta(step)
        return step
