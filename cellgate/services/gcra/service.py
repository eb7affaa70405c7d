"""GCRA rate limiter backed by a shared bucket store.

A Limiter is constructed once with an explicit store and passed to call
sites. It holds no per-key state: every decision is exactly one atomic
round trip to the store, which is the single source of truth shared by
all processes.
"""

import asyncio
import time
import warnings
from typing import Any, Optional

from cellgate.core.clock import US_PER_MS, Clock, SystemClock
from cellgate.core.config import Settings, settings
from cellgate.core.logging import get_log_context, get_logger
from cellgate.exceptions import ClockSkewWarning, InvalidSpecError, StoreUnavailableError
from cellgate.services.gcra.models import BucketState, Decision, RateSpec
from cellgate.services.gcra.store import BucketStore, InMemoryBucketStore, RedisBucketStore

logger = get_logger(__name__)


class Limiter:
    """Distributed rate limiter using GCRA.

    Provides:
    - allow / allow_n: admit a request of unit or arbitrary cost
    - allow_at_most: admit as many units as are available, up to n
    - reset: forget a key's bucket
    - check_clock_skew: compare the local clock with the store's

    Store failures surface as StoreUnavailableError and are never turned
    into a decision. No retries are performed.
    """

    def __init__(
        self,
        store: BucketStore,
        clock: Optional[Clock] = None,
        key_prefix: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Bucket store executing decisions atomically
            clock: Time source (defaults to SystemClock)
            key_prefix: Prefix for store keys (defaults to settings)
            timeout: Default deadline in seconds for one round trip
                (defaults to settings)
        """
        self._store = store
        self._clock = clock or SystemClock()
        self._key_prefix = settings.rate_limit_key_prefix if key_prefix is None else key_prefix
        self._timeout = settings.rate_limit_timeout_seconds if timeout is None else timeout

    @property
    def store(self) -> BucketStore:
        return self._store

    def _make_key(self, key: str) -> str:
        if not isinstance(key, str) or not key:
            raise InvalidSpecError(f"key must be a non-empty string, got {key!r}")
        return f"{self._key_prefix}{key}"

    async def _round_trip(self, coro, key: str, timeout: Optional[float]) -> Decision:
        deadline = self._timeout if timeout is None else timeout
        started = time.perf_counter()
        try:
            decision = await asyncio.wait_for(coro, timeout=deadline)
        except asyncio.TimeoutError as e:
            logger.warning(
                f"Rate limit round trip exceeded {deadline}s deadline",
                extra=get_log_context(rate_key=key),
            )
            raise StoreUnavailableError(key, f"Store round trip exceeded {deadline}s") from e
        logger.debug(
            f"{'allow' if decision.allowed else 'deny'} remaining={decision.remaining} "
            f"retry_after={decision.retry_after}",
            extra=get_log_context(
                rate_key=key,
                duration_ms=round((time.perf_counter() - started) * 1000, 3),
            ),
        )
        return decision

    async def allow(self, key: str, spec: RateSpec, timeout: Optional[float] = None) -> Decision:
        """Admit one unit for `key` under `spec`."""
        return await self.allow_n(key, spec, 1, timeout=timeout)

    async def allow_n(
        self,
        key: str,
        spec: RateSpec,
        n: int,
        timeout: Optional[float] = None,
    ) -> Decision:
        """Admit `n` units for `key` under `spec`.

        A request with n > spec.burst is always denied with
        retry_after == NEVER.

        Args:
            key: Caller-supplied identifier, e.g. "project:123"
            spec: Rate specification
            n: Units requested (>= 1)
            timeout: Deadline in seconds for the store round trip

        Returns:
            Decision

        Raises:
            InvalidSpecError: If key, spec or n is invalid (no store interaction)
            StoreUnavailableError: If the round trip fails or times out
        """
        store_key = self._validate(key, spec, n)
        now_us = self._clock.now_us()
        return await self._round_trip(
            self._store.allow_n(store_key, now_us, spec, n), store_key, timeout
        )

    async def allow_at_most(
        self,
        key: str,
        spec: RateSpec,
        n: int,
        timeout: Optional[float] = None,
    ) -> Decision:
        """Admit up to `n` units; Decision.admitted is how many were taken."""
        store_key = self._validate(key, spec, n)
        now_us = self._clock.now_us()
        return await self._round_trip(
            self._store.allow_at_most(store_key, now_us, spec, n), store_key, timeout
        )

    def _validate(self, key: str, spec: RateSpec, n: int) -> str:
        if not isinstance(spec, RateSpec):
            raise InvalidSpecError(f"spec must be a RateSpec, got {type(spec).__name__}")
        if isinstance(n, bool) or not isinstance(n, int) or n < 1:
            raise InvalidSpecError(f"cost must be a positive integer, got {n!r}")
        return self._make_key(key)

    async def reset(self, key: str) -> None:
        """Drop all state for `key`; its next request sees an empty bucket."""
        await self._store.reset(self._make_key(key))

    async def get_state(self, key: str) -> Optional[BucketState]:
        """Stored TAT for `key`, or None when its bucket is empty."""
        return await self._store.get_state(self._make_key(key))

    async def check_clock_skew(self, tolerance_ms: Optional[int] = None) -> float:
        """Compare the local clock with the store's clock.

        Skew beyond tolerance is logged and reported as a ClockSkewWarning;
        it is never raised, since GCRA only compares relative deltas.

        Returns:
            Skew in seconds (local minus store)
        """
        tolerance_ms = settings.clock_skew_tolerance_ms if tolerance_ms is None else tolerance_ms
        store_now_us = await self._store.server_time_us()
        skew_us = self._clock.now_us() - store_now_us
        if abs(skew_us) > tolerance_ms * US_PER_MS:
            message = (
                f"Clock skew of {skew_us / US_PER_MS:.1f}ms between limiter and store "
                f"exceeds {tolerance_ms}ms tolerance"
            )
            logger.warning(message)
            warnings.warn(message, ClockSkewWarning, stacklevel=2)
        return skew_us / 1_000_000

    async def close(self) -> None:
        await self._store.close()


def create_limiter(
    config: Optional[Settings] = None,
    redis_client: Optional[Any] = None,
    clock: Optional[Clock] = None,
) -> Limiter:
    """Build a Limiter from settings.

    Uses a Redis store when redis is enabled (or a client is supplied),
    otherwise an in-memory store.
    """
    config = config or settings
    if redis_client is not None or config.redis_enabled:
        store: BucketStore = RedisBucketStore(redis_client=redis_client, redis_url=config.redis_url)
        logger.info("Using Redis bucket store")
    else:
        store = InMemoryBucketStore(clock=clock)
        logger.info("Using in-memory bucket store (single instance only)")
    return Limiter(
        store,
        clock=clock,
        key_prefix=config.rate_limit_key_prefix,
        timeout=config.rate_limit_timeout_seconds,
    )
