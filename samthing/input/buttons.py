"""Hardware button codes and normalized event kinds.

Device layout: four top buttons, a menu button, a rotary wheel with a press
action and a back button. Codes are opaque strings compared by equality.
"""

from enum import Enum


class EventMode(Enum):
    KEY_UP = "key_up"
    KEY_DOWN = "key_down"
    SCROLL_UP = "scroll_up"
    SCROLL_DOWN = "scroll_down"
    PRESS_SHORT = "press_short"
    PRESS_LONG = "press_long"


class HandlerResult(Enum):
    CONSUMED = "consumed"
    PASSTHROUGH = "passthrough"


PRESS_MODES = (EventMode.PRESS_SHORT, EventMode.PRESS_LONG)

# Top buttons (left to right)
BUTTON_TOP_1 = "Digit1"
BUTTON_TOP_2 = "Digit2"
BUTTON_TOP_3 = "Digit3"
BUTTON_TOP_4 = "Digit4"

BUTTON_MENU = "KeyM"
BUTTON_WHEEL_PRESS = "Enter"
BUTTON_BACK = "Escape"

ARROW_UP = "ArrowUp"
ARROW_DOWN = "ArrowDown"
ARROW_LEFT = "ArrowLeft"
ARROW_RIGHT = "ArrowRight"

# Pseudo code under which wheel detents travel through the handler chain.
WHEEL_CODE = "Wheel"

# Rotation applied when no handler consumes a directional press.
DIRECTIONAL_STEPS = {
    ARROW_UP: -1,
    ARROW_LEFT: -1,
    ARROW_DOWN: 1,
    ARROW_RIGHT: 1,
}
