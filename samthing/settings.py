"""Client manifest, preferences and feature flags, persisted to a JSON file."""

import copy
import json
import os
import threading
import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional

from . import config
from .logging_config import log
from .protocol import ClientMessage, Envelope


DEFAULT_MANIFEST: Dict[str, Any] = {
    "name": "SamThing",
    "id": "samthing",
    "short_name": "SamThing",
    "description": "A streamlined client for phone-like devices",
    "context": {
        "method": "unknown",
        "id": "unknown",
        "name": "Unknown Connection Method",
        "ip": "192.168.159.1",
        "port": 8891,
    },
    "reactive": False,
    "author": "",
    "version": config.VERSION,
    "compatibility": {
        "server": ">=0.11.0",
        "app": ">=0.10.0",
    },
    "repository": "",
}

DEFAULT_PREFERENCES: Dict[str, Any] = {}

Sender = Callable[..., Any]
Subscriber = Callable[["SettingsStore"], Any]


def load_manifest_file(path: str) -> Dict[str, Any]:
    """Read an externally supplied manifest; returns {} when missing or unreadable."""
    p = str(path or "").strip()
    if not p or not os.path.exists(p):
        return {}
    try:
        with open(p, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError):
        log.warning("Manifest file %s could not be read", p, exc_info=True)
        return {}
    if not isinstance(data, dict):
        log.warning("Manifest file %s does not hold an object", p)
        return {}
    return data


class SettingsStore:
    def __init__(
        self,
        path: Optional[str] = None,
        *,
        manifest: Optional[Mapping[str, Any]] = None,
        preferences: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Initialize SettingsStore state and collaborator references."""
        self.path = path
        self._lock = threading.RLock()
        self._manifest: Dict[str, Any] = copy.deepcopy(dict(manifest or DEFAULT_MANIFEST))
        self._preferences: Dict[str, Any] = copy.deepcopy(dict(preferences or DEFAULT_PREFERENCES))
        self._flags: Dict[str, bool] = {}
        self._subscribers: List[Subscriber] = []
        self._sender: Optional[Sender] = None

    @property
    def manifest(self) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._manifest)

    @property
    def preferences(self) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._preferences)

    @property
    def flags(self) -> Dict[str, bool]:
        with self._lock:
            return dict(self._flags)

    def set_sender(self, sender: Optional[Sender]) -> None:
        """Attach the outbound channel used to announce manifest changes."""
        self._sender = sender

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Call `subscriber(store)` after every change; returns an unsubscribe callable."""
        self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            try:
                self._subscribers.remove(subscriber)
            except ValueError:
                pass

        return _unsubscribe

    def _notify(self) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(self)
            except Exception:
                log.exception("Settings subscriber failed")

    def update_manifest(self, changes: Mapping[str, Any]) -> Dict[str, Any]:
        """Shallow-merge `changes` into the manifest and announce it to the server."""
        with self._lock:
            self._manifest = {**self._manifest, **copy.deepcopy(dict(changes or {}))}
            merged = copy.deepcopy(self._manifest)
        self.save()
        sender = self._sender
        if sender is not None:
            log.debug("Sending manifest update to server")
            sender(Envelope(type=ClientMessage.MANIFEST, app="server", payload=merged))
        self._notify()
        return merged

    def update_preferences(self, changes: Mapping[str, Any]) -> Dict[str, Any]:
        """Shallow-merge `changes` into the preferences."""
        with self._lock:
            self._preferences = {**self._preferences, **copy.deepcopy(dict(changes or {}))}
            merged = copy.deepcopy(self._preferences)
        self.save()
        self._notify()
        return merged

    def check_flag(self, key: str) -> bool:
        with self._lock:
            return bool(self._flags.get(key, False))

    def set_flag(self, key: str, value: bool) -> None:
        with self._lock:
            self._flags[str(key)] = bool(value)
        self.save()
        self._notify()

    def websocket_url(self, scheme: Optional[str] = None) -> Optional[str]:
        """Return `<scheme>://<ip>:<port>` from the manifest context, or None if incomplete."""
        with self._lock:
            context = self._manifest.get("context")
            if not isinstance(context, Mapping):
                return None
            ip = str(context.get("ip") or "").strip()
            port = context.get("port")
        if not ip or port in (None, ""):
            return None
        return f"{scheme or config.WS_SCHEME}://{ip}:{port}"

    def load(self) -> bool:
        """Load persisted state; returns False and keeps defaults when unavailable."""
        if not self.path or not os.path.exists(self.path):
            return False
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            log.warning("Settings file %s is unreadable; using defaults", self.path, exc_info=True)
            return False
        if not isinstance(data, dict):
            log.warning("Settings file %s does not hold an object; using defaults", self.path)
            return False
        with self._lock:
            if isinstance(data.get("manifest"), dict):
                self._manifest = {**self._manifest, **data["manifest"]}
            if isinstance(data.get("preferences"), dict):
                self._preferences = {**self._preferences, **data["preferences"]}
            if isinstance(data.get("flags"), dict):
                self._flags = {str(k): bool(v) for k, v in data["flags"].items()}
        return True

    def save(self) -> bool:
        """Atomically write the current state; failures are logged, not raised."""
        if not self.path:
            return False
        with self._lock:
            data = {
                "manifest": copy.deepcopy(self._manifest),
                "preferences": copy.deepcopy(self._preferences),
                "flags": dict(self._flags),
            }
        tmp_path = self.path + f".tmp-{uuid.uuid4().hex[:8]}"
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
            return True
        except (OSError, TypeError, ValueError):
            log.exception("Failed to save settings to %s", self.path)
            return False
        finally:
            try:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
            except OSError:
                pass
