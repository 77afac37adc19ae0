"""Time sources injected into every time-dependent rule."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        """Return the current instant as a timezone-aware UTC datetime."""


class SystemClock:
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """Settable clock for deterministic tests and simulations."""

    def __init__(self, start: datetime) -> None:
        if start.tzinfo is None:
            raise ValueError("ManualClock requires a timezone-aware start instant")
        self._now = start.astimezone(timezone.utc)
        self._lock = RLock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            raise ValueError("instant must be timezone-aware")
        with self._lock:
            self._now = instant.astimezone(timezone.utc)

    def advance(self, seconds: float = 0.0, hours: float = 0.0) -> datetime:
        with self._lock:
            self._now = self._now + timedelta(seconds=seconds, hours=hours)
            return self._now
