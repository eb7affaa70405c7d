"""Clock abstraction for rate math.

All times are integer microseconds since the Unix epoch. Epoch
microseconds remain exactly representable as doubles, which is what
Redis Lua uses for numbers.
"""

import time
from abc import ABC, abstractmethod

US_PER_SECOND = 1_000_000
US_PER_MS = 1_000


class Clock(ABC):
    """Source of the current time."""

    @abstractmethod
    def now_us(self) -> int:
        """Return the current time in integer microseconds."""
        pass


class SystemClock(Clock):
    """Wall clock backed by time.time_ns()."""

    def now_us(self) -> int:
        return time.time_ns() // 1_000


class ManualClock(Clock):
    """Clock that only moves when told to. Used for deterministic tests."""

    def __init__(self, start_us: int = 0):
        self._now_us = int(start_us)

    def now_us(self) -> int:
        return self._now_us

    def set(self, us: int) -> None:
        self._now_us = int(us)

    def advance(self, seconds: float = 0, ms: float = 0, us: int = 0) -> int:
        """Move the clock forward and return the new time."""
        self._now_us += round(seconds * US_PER_SECOND) + round(ms * US_PER_MS) + int(us)
        return self._now_us
