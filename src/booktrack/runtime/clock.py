# runtime/clock.py
from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from typing import Protocol


def minutes(x: float) -> timedelta:
    return timedelta(minutes=x)


def hours(x: float) -> timedelta:
    return timedelta(hours=x)


def as_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    return dt if dt.tzinfo else dt.replace(tzinfo=UTC)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(UTC)


class ManualClock:
    """Deterministic clock for tests and replays. Only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self._t = as_utc(start) if start else datetime(2025, 1, 1, tzinfo=UTC)
        self._lock = threading.Lock()

    @classmethod
    def utc(cls, y: int, m: int, d: int, hh=0, mm=0, ss=0) -> ManualClock:
        return cls(datetime(y, m, d, hh, mm, ss, tzinfo=UTC))

    def now(self) -> datetime:
        with self._lock:
            return self._t

    def advance(self, delta: timedelta | float) -> datetime:
        """Move forward by a timedelta or by a number of seconds."""
        step = delta if isinstance(delta, timedelta) else timedelta(seconds=delta)
        if step < timedelta(0):
            raise ValueError("clock cannot move backwards")
        with self._lock:
            self._t = self._t + step
            return self._t

    def set(self, t: datetime) -> None:
        t = as_utc(t)
        with self._lock:
            if t < self._t:
                raise ValueError(f"time went backwards: {t} < {self._t}")
            self._t = t
