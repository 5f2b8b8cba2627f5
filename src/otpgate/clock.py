"""Wall-clock sources for time-window computation."""

from __future__ import annotations

import math
import time
from datetime import datetime, timezone
from typing import Protocol

from otpgate.errors import ClockUnavailable


class Clock(Protocol):
    def now(self) -> float:
        """Current Unix time in seconds."""
        ...


class SystemClock:
    """Reads ``time.time()``; any failure is fatal to the caller."""

    def now(self) -> float:
        try:
            value = time.time()
        except OSError as e:
            raise ClockUnavailable("System clock could not be read") from e
        if not math.isfinite(value) or value < 0:
            raise ClockUnavailable(f"System clock returned unusable value {value!r}")
        return value


class FixedClock:
    """A settable clock for tests and replays."""

    def __init__(self, at: float | datetime) -> None:
        self.set(at)

    def set(self, at: float | datetime) -> None:
        if isinstance(at, datetime):
            if at.tzinfo is None:
                at = at.replace(tzinfo=timezone.utc)
            at = at.timestamp()
        self._now = float(at)

    def advance(self, seconds: float) -> None:
        self._now += seconds

    def now(self) -> float:
        return self._now
