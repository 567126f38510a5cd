import os


VERSION = "0.0.1"


def _env_int(name: str, default: int) -> int:
    """Read integer env var with fallback for malformed values."""
    raw = os.environ.get(name, None)
    if raw is None:
        return int(default)
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return int(default)


def _env_float(name: str, default: float) -> float:
    """Read float env var with fallback for malformed values."""
    raw = os.environ.get(name, None)
    if raw is None:
        return float(default)
    try:
        return float(str(raw).strip())
    except (TypeError, ValueError):
        return float(default)


DEBUG = os.environ.get("SAMTHING_DEBUG", "0") == "1"
CONSOLE_LOG = os.environ.get("SAMTHING_CONSOLE", "0") == "1"
LOG_ENABLED = os.environ.get("SAMTHING_LOG", "0") == "1" or CONSOLE_LOG

_DATA_DIR_ENV = str(os.environ.get("SAMTHING_DATA_DIR", "") or "").strip()
DATA_DIR = os.path.abspath(_DATA_DIR_ENV or os.path.join(os.path.expanduser("~"), ".samthing"))
SETTINGS_FILE = os.path.join(DATA_DIR, "samthing_settings.json")
LOG_FILE = os.path.join(DATA_DIR, "samthing.log")
MANIFEST_FILE = str(os.environ.get("SAMTHING_MANIFEST_FILE", "") or "").strip()

WS_SCHEME = str(os.environ.get("SAMTHING_WS_SCHEME", "ws") or "ws").strip().lower()
CONNECT_TIMEOUT_S = _env_float("SAMTHING_CONNECT_TIMEOUT_S", 10.0)
WS_PING_INTERVAL_S = _env_float("SAMTHING_WS_PING_INTERVAL_S", 20.0)
RECONNECT_INITIAL_S = _env_float("SAMTHING_RECONNECT_INITIAL_S", 1.0)
RECONNECT_MAX_S = _env_float("SAMTHING_RECONNECT_MAX_S", 30.0)
RECONNECT_FACTOR = _env_float("SAMTHING_RECONNECT_FACTOR", 2.0)
RECONNECT_JITTER = _env_float("SAMTHING_RECONNECT_JITTER", 0.2)
OUTBOUND_QUEUE_MAX = _env_int("SAMTHING_OUTBOUND_QUEUE_MAX", 256)
# Inbound envelopes are only routed to the dispatcher when tagged for this app.
INBOUND_APP = str(os.environ.get("SAMTHING_INBOUND_APP", "client") or "").strip()

LONG_PRESS_MS = _env_int("SAMTHING_LONG_PRESS_MS", 400)
INPUT_BACKEND = str(os.environ.get("SAMTHING_INPUT_BACKEND", "auto") or "auto").strip().lower()


def reload_from_env() -> None:
    """Reload runtime configuration from environment variables."""
    global DEBUG, CONSOLE_LOG, LOG_ENABLED
    global DATA_DIR, SETTINGS_FILE, LOG_FILE, MANIFEST_FILE
    global WS_SCHEME, CONNECT_TIMEOUT_S, WS_PING_INTERVAL_S
    global RECONNECT_INITIAL_S, RECONNECT_MAX_S, RECONNECT_FACTOR, RECONNECT_JITTER
    global OUTBOUND_QUEUE_MAX, INBOUND_APP
    global LONG_PRESS_MS, INPUT_BACKEND

    DEBUG = os.environ.get("SAMTHING_DEBUG", "0") == "1"
    CONSOLE_LOG = os.environ.get("SAMTHING_CONSOLE", "0") == "1"
    LOG_ENABLED = os.environ.get("SAMTHING_LOG", "0") == "1" or CONSOLE_LOG

    data_dir = str(os.environ.get("SAMTHING_DATA_DIR", "") or "").strip()
    if data_dir:
        DATA_DIR = os.path.abspath(data_dir)
        SETTINGS_FILE = os.path.join(DATA_DIR, "samthing_settings.json")
        LOG_FILE = os.path.join(DATA_DIR, "samthing.log")
    MANIFEST_FILE = str(os.environ.get("SAMTHING_MANIFEST_FILE", MANIFEST_FILE) or "").strip()

    WS_SCHEME = str(os.environ.get("SAMTHING_WS_SCHEME", WS_SCHEME) or "ws").strip().lower()
    CONNECT_TIMEOUT_S = _env_float("SAMTHING_CONNECT_TIMEOUT_S", CONNECT_TIMEOUT_S)
    WS_PING_INTERVAL_S = _env_float("SAMTHING_WS_PING_INTERVAL_S", WS_PING_INTERVAL_S)
    RECONNECT_INITIAL_S = _env_float("SAMTHING_RECONNECT_INITIAL_S", RECONNECT_INITIAL_S)
    RECONNECT_MAX_S = _env_float("SAMTHING_RECONNECT_MAX_S", RECONNECT_MAX_S)
    RECONNECT_FACTOR = _env_float("SAMTHING_RECONNECT_FACTOR", RECONNECT_FACTOR)
    RECONNECT_JITTER = _env_float("SAMTHING_RECONNECT_JITTER", RECONNECT_JITTER)
    OUTBOUND_QUEUE_MAX = _env_int("SAMTHING_OUTBOUND_QUEUE_MAX", OUTBOUND_QUEUE_MAX)
    INBOUND_APP = str(os.environ.get("SAMTHING_INBOUND_APP", INBOUND_APP) or "").strip()

    LONG_PRESS_MS = _env_int("SAMTHING_LONG_PRESS_MS", LONG_PRESS_MS)
    INPUT_BACKEND = str(os.environ.get("SAMTHING_INPUT_BACKEND", INPUT_BACKEND) or "auto").strip().lower()
