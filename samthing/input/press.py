"""Short/long press classification from raw key down/up signals."""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .. import config
from ..logging_config import log
from .buttons import EventMode


Emit = Callable[[str, EventMode], Any]
Scheduler = Callable[[float, Callable[[], None]], Any]


class KeyPhase(Enum):
    IDLE = "idle"
    PENDING = "pending"
    LONG_FIRED = "long_fired"


@dataclass
class _KeyState:
    phase: KeyPhase
    timer: Any = None


class KeyPressStateMachine:
    """Emit exactly one PRESS_SHORT or PRESS_LONG per down/up cycle of a key.

    Each key code gets its own cancellable timer. Holding a key past the
    threshold emits PRESS_LONG at the threshold and nothing on release;
    releasing earlier emits PRESS_SHORT. Auto-repeated down signals are ignored.
    """

    def __init__(self, emit: Emit, *, threshold_s: Optional[float] = None, scheduler: Optional[Scheduler] = None) -> None:
        """Initialize KeyPressStateMachine state and collaborator references."""
        self._emit = emit
        self.threshold_s = float(config.LONG_PRESS_MS) / 1000.0 if threshold_s is None else float(threshold_s)
        self._scheduler = scheduler
        self._keys: Dict[str, _KeyState] = {}

    def _schedule(self, callback: Callable[[], None]) -> Any:
        if self._scheduler is not None:
            return self._scheduler(self.threshold_s, callback)
        return asyncio.get_running_loop().call_later(self.threshold_s, callback)

    def phase(self, code: str) -> KeyPhase:
        state = self._keys.get(code)
        return state.phase if state is not None else KeyPhase.IDLE

    @property
    def active_keys(self) -> int:
        return len(self._keys)

    def key_down(self, code: str) -> None:
        if code in self._keys:
            return
        state = _KeyState(KeyPhase.PENDING)
        self._keys[code] = state
        state.timer = self._schedule(lambda: self._threshold_elapsed(code, state))

    def _threshold_elapsed(self, code: str, state: _KeyState) -> None:
        if self._keys.get(code) is not state or state.phase is not KeyPhase.PENDING:
            return
        state.phase = KeyPhase.LONG_FIRED
        state.timer = None
        self._emit(code, EventMode.PRESS_LONG)

    def key_up(self, code: str) -> None:
        state = self._keys.pop(code, None)
        if state is None:
            # Release without an observed press (e.g. held before start-up).
            log.debug("Key up without key down: %s", code)
            self._emit(code, EventMode.PRESS_SHORT)
            return
        if state.timer is not None:
            state.timer.cancel()
            state.timer = None
        if state.phase is not KeyPhase.LONG_FIRED:
            self._emit(code, EventMode.PRESS_SHORT)

    def teardown(self) -> None:
        """Cancel every outstanding long-press timer and forget all keys."""
        states, self._keys = self._keys, {}
        for state in states.values():
            if state.timer is not None:
                state.timer.cancel()
                state.timer = None
