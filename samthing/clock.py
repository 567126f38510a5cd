"""Server-synchronized wall clock."""

import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional


class Clock:
    """Track the server's notion of time and the device's display time zone.

    `sync_time` receives the server's UTC time in epoch milliseconds and the
    zone offset in minutes east of UTC. Until the first sync the local clock
    and local zone are used.
    """

    def __init__(self, time_fn: Callable[[], float] = time.time) -> None:
        self._time_fn = time_fn
        self._skew_s = 0.0
        self._tz: Optional[timezone] = None
        self.last_sync_ts: Optional[float] = None

    @property
    def synced(self) -> bool:
        return self.last_sync_ts is not None

    @property
    def timezone_offset_minutes(self) -> Optional[int]:
        if self._tz is None:
            return None
        offset = self._tz.utcoffset(None)
        return int(offset.total_seconds() // 60)

    def sync_time(self, utc_time: float, timezone_offset: float) -> None:
        """Align with the server clock."""
        utc_s = float(utc_time) / 1000.0
        offset_min = float(timezone_offset)
        if not -24 * 60 < offset_min < 24 * 60:
            raise ValueError(f"timezone offset out of range: {timezone_offset!r}")
        now = self._time_fn()
        self._skew_s = utc_s - now
        self._tz = timezone(timedelta(minutes=offset_min))
        self.last_sync_ts = now

    def timestamp(self) -> float:
        """Current server-aligned epoch seconds."""
        return self._time_fn() + self._skew_s

    def now(self) -> datetime:
        """Current server-aligned time as an aware datetime in the synced zone."""
        current = datetime.fromtimestamp(self.timestamp(), tz=timezone.utc)
        if self._tz is None:
            return current.astimezone()
        return current.astimezone(self._tz)

    def formatted(self, fmt: str = "%H:%M") -> str:
        return self.now().strftime(fmt)
