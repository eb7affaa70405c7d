"""Data models for GCRA rate limiting."""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional, Sequence, Union

from cellgate.core.clock import US_PER_SECOND
from cellgate.exceptions import InvalidSpecError

# Sentinel for retry_after_us when a request can never be admitted
NEVER_US = -1
NEVER = -1.0

Period = Union[timedelta, int, float]


def _period_to_us(period: Period) -> int:
    if isinstance(period, timedelta):
        return period // timedelta(microseconds=1)
    if isinstance(period, bool) or not isinstance(period, (int, float)):
        raise InvalidSpecError(f"period must be a timedelta or seconds, got {period!r}")
    return round(period * US_PER_SECOND)


@dataclass(frozen=True)
class RateSpec:
    """A limit of `permitted` units per `period_us` microseconds.

    Attributes:
        permitted: Units admitted per period (sustained rate)
        period_us: Period length in microseconds
        burst: Bucket depth in units; defaults to permitted
        emission_interval_us: Time cost of one unit, derived once
    """
    permitted: int
    period_us: int
    burst: Optional[int] = None
    emission_interval_us: int = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        for name in ("permitted", "period_us"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidSpecError(f"{name} must be an integer, got {value!r}")
        if self.permitted < 1:
            raise InvalidSpecError(f"permitted must be at least 1, got {self.permitted}")
        if self.period_us <= 0:
            raise InvalidSpecError(f"period must be positive, got {self.period_us}us")
        if self.period_us < self.permitted:
            raise InvalidSpecError(
                f"{self.permitted} per {self.period_us}us is finer than 1us resolution"
            )
        if self.burst is None:
            object.__setattr__(self, "burst", self.permitted)
        elif isinstance(self.burst, bool) or not isinstance(self.burst, int) or self.burst < 1:
            raise InvalidSpecError(f"burst must be a positive integer, got {self.burst!r}")
        object.__setattr__(self, "emission_interval_us", self.period_us // self.permitted)

    @property
    def burst_offset_us(self) -> int:
        """Time for a full bucket to drain; also the key TTL."""
        return self.burst * self.emission_interval_us

    @property
    def period(self) -> timedelta:
        return timedelta(microseconds=self.period_us)

    @classmethod
    def per_period(cls, permitted: int, period: Period, burst: Optional[int] = None) -> "RateSpec":
        """Build a spec for an arbitrary period (timedelta or seconds)."""
        return cls(permitted=permitted, period_us=_period_to_us(period), burst=burst)

    @classmethod
    def per_second(cls, permitted: int, burst: Optional[int] = None) -> "RateSpec":
        return cls.per_period(permitted, timedelta(seconds=1), burst=burst)

    @classmethod
    def per_minute(cls, permitted: int, burst: Optional[int] = None) -> "RateSpec":
        return cls.per_period(permitted, timedelta(minutes=1), burst=burst)

    @classmethod
    def per_hour(cls, permitted: int, burst: Optional[int] = None) -> "RateSpec":
        return cls.per_period(permitted, timedelta(hours=1), burst=burst)

    def __str__(self) -> str:
        return f"{self.permitted}/{self.period}(burst={self.burst})"


@dataclass(frozen=True)
class BucketState:
    """Persisted state of one key: the theoretical arrival time.

    Stored as a decimal integer string under the bucket key.
    """
    tat_us: int

    def encode(self) -> str:
        return str(self.tat_us)

    @classmethod
    def decode(cls, raw: Union[bytes, str, int, None]) -> Optional["BucketState"]:
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()
        return cls(tat_us=int(raw))


@dataclass(frozen=True)
class Decision:
    """Result of one rate limit decision.

    Attributes:
        allowed: Whether the request was admitted
        limit: Bucket depth (burst) the decision was made against
        remaining: Whole units still available after this call
        retry_after_us: Wait until the request could be admitted; 0 when
            allowed, NEVER_US when it can never be admitted
        reset_after_us: Time until the bucket is fully drained
        admitted: Units consumed by this call
    """
    allowed: bool
    limit: int
    remaining: int
    retry_after_us: int
    reset_after_us: int
    admitted: int = 0

    @property
    def retry_after(self) -> float:
        """Seconds until retry; NEVER (-1.0) when never satisfiable."""
        if self.retry_after_us == NEVER_US:
            return NEVER
        return self.retry_after_us / US_PER_SECOND

    @property
    def reset_after(self) -> float:
        return self.reset_after_us / US_PER_SECOND

    @property
    def satisfiable(self) -> bool:
        return self.retry_after_us != NEVER_US

    @classmethod
    def from_reply(cls, reply: Sequence, limit: int) -> "Decision":
        """Parse a store reply of {admitted, remaining, retry_after_us, reset_after_us}."""
        if len(reply) != 4:
            raise ValueError(f"unexpected store reply: {reply!r}")
        admitted, remaining, retry_after_us, reset_after_us = (int(v) for v in reply)
        return cls(
            allowed=admitted > 0,
            limit=limit,
            remaining=remaining,
            retry_after_us=retry_after_us,
            reset_after_us=reset_after_us,
            admitted=admitted,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "allowed": self.allowed,
            "limit": self.limit,
            "remaining": self.remaining,
            "retry_after": self.retry_after,
            "reset_after": self.reset_after,
            "admitted": self.admitted,
        }
