"""Bucket stores that run a GCRA decision as one atomic operation.

RedisBucketStore submits the whole read-evaluate-write sequence as a Lua
script, so any number of processes can share a key. InMemoryBucketStore
applies the same evaluator under an asyncio.Lock and is suitable for tests
and single-instance deployments.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

import redis
import redis.asyncio as aioredis

from cellgate.core.clock import US_PER_MS, US_PER_SECOND, Clock, SystemClock
from cellgate.core.config import settings
from cellgate.core.logging import get_log_context, get_logger
from cellgate.exceptions import StoreUnavailableError
from cellgate.services.gcra.evaluator import evaluate, evaluate_at_most
from cellgate.services.gcra.models import BucketState, Decision, RateSpec
from cellgate.services.gcra.redis_lua import (
    GCRA_ALLOW_AT_MOST_SCRIPT,
    GCRA_ALLOW_N_SCRIPT,
)

logger = get_logger(__name__)


class BucketStore(ABC):
    """Abstract base class for bucket stores."""

    @abstractmethod
    async def allow_n(self, key: str, now_us: int, spec: RateSpec, cost: int) -> Decision:
        """Atomically evaluate and, if admitted, consume `cost` units.

        Args:
            key: Full store key
            now_us: Caller's current time in microseconds
            spec: Rate specification
            cost: Units requested

        Returns:
            Decision for this call

        Raises:
            StoreUnavailableError: If the round trip cannot be completed
        """
        pass

    @abstractmethod
    async def allow_at_most(self, key: str, now_us: int, spec: RateSpec, n: int) -> Decision:
        """Atomically consume up to `n` units, as many as are available."""
        pass

    @abstractmethod
    async def reset(self, key: str) -> None:
        """Forget the bucket for `key`."""
        pass

    @abstractmethod
    async def get_state(self, key: str) -> Optional[BucketState]:
        """Stored state of `key`, or None when the bucket is empty."""
        pass

    @abstractmethod
    async def server_time_us(self) -> int:
        """Current time according to the store."""
        pass

    async def close(self) -> None:
        """Release any connections held by the store."""
        pass


class RedisBucketStore(BucketStore):
    """Redis-based distributed bucket store.

    Each decision is a single EVAL round trip. Redis executes scripts
    atomically, which makes the read-evaluate-write sequence linearizable
    per key without locks.

    Redis key format:
    - {prefix}{identifier} - TAT in microseconds, with PX expiry
    """

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
    ) -> None:
        """Initialize Redis bucket store.

        Args:
            redis_client: Optional redis.asyncio client instance
            redis_url: Redis connection URL (defaults to settings.redis_url)
        """
        self._redis = redis_client
        self._redis_url = redis_url or settings.redis_url

    async def _get_redis(self) -> Any:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = aioredis.from_url(
                self._redis_url,
                socket_timeout=settings.redis_socket_timeout,
                socket_connect_timeout=settings.redis_connect_timeout,
            )
        return self._redis

    async def _eval(self, script: str, key: str, now_us: int, spec: RateSpec, units: int) -> Decision:
        redis_client = await self._get_redis()
        try:
            reply = await redis_client.eval(
                script,
                1,  # Number of keys
                key,  # KEYS[1]
                now_us,  # ARGV[1]
                spec.emission_interval_us,  # ARGV[2]
                spec.burst,  # ARGV[3]
                units,  # ARGV[4]
            )
        except redis.ConnectionError as e:
            logger.error(f"Redis connection failed: {e}", extra=get_log_context(rate_key=key))
            raise StoreUnavailableError(key, f"Redis connection failed: {e}") from e
        except redis.TimeoutError as e:
            logger.warning(f"Redis timeout: {e}", extra=get_log_context(rate_key=key))
            raise StoreUnavailableError(key, f"Redis timeout: {e}") from e
        except redis.RedisError as e:
            logger.error(f"Lua script execution failed: {e}", extra=get_log_context(rate_key=key))
            raise StoreUnavailableError(key, f"Lua script execution failed: {e}") from e

        try:
            return Decision.from_reply(reply, spec.burst)
        except (TypeError, ValueError) as e:
            logger.error(f"Malformed script reply {reply!r}", extra=get_log_context(rate_key=key))
            raise StoreUnavailableError(key, f"Malformed script reply: {reply!r}") from e

    async def allow_n(self, key: str, now_us: int, spec: RateSpec, cost: int) -> Decision:
        return await self._eval(GCRA_ALLOW_N_SCRIPT, key, now_us, spec, cost)

    async def allow_at_most(self, key: str, now_us: int, spec: RateSpec, n: int) -> Decision:
        return await self._eval(GCRA_ALLOW_AT_MOST_SCRIPT, key, now_us, spec, n)

    async def reset(self, key: str) -> None:
        redis_client = await self._get_redis()
        try:
            await redis_client.delete(key)
        except redis.RedisError as e:
            logger.error(f"Redis delete failed: {e}", extra=get_log_context(rate_key=key))
            raise StoreUnavailableError(key, f"Redis delete failed: {e}") from e

    async def get_state(self, key: str) -> Optional[BucketState]:
        redis_client = await self._get_redis()
        try:
            raw = await redis_client.get(key)
        except redis.RedisError as e:
            logger.error(f"Redis get failed: {e}", extra=get_log_context(rate_key=key))
            raise StoreUnavailableError(key, f"Redis get failed: {e}") from e
        return BucketState.decode(raw)

    async def server_time_us(self) -> int:
        redis_client = await self._get_redis()
        try:
            seconds, micros = await redis_client.time()
        except redis.RedisError as e:
            raise StoreUnavailableError(detail=f"Redis TIME failed: {e}") from e
        return int(seconds) * US_PER_SECOND + int(micros)

    async def close(self) -> None:
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except redis.RedisError as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self._redis = None


class InMemoryBucketStore(BucketStore):
    """In-process bucket store.

    Keeps key -> (BucketState, expires_at_us) and serializes decisions with
    an asyncio.Lock. Expiry is judged against the now_us callers pass in,
    never against a clock of the store's own. Expired entries are treated as
    absent, and the whole map is swept whenever it reaches purge_threshold,
    so memory stays bounded by the keys active within one drain window.
    Only safe within a single event loop.
    """

    def __init__(self, clock: Optional[Clock] = None, purge_threshold: int = 1024):
        if purge_threshold < 1:
            raise ValueError("purge_threshold must be positive")
        self._clock = clock or SystemClock()
        self._buckets: Dict[str, Tuple[BucketState, int]] = {}
        self._lock = asyncio.Lock()
        self._purge_threshold = purge_threshold
        self._purge_at = purge_threshold
        self._last_now_us = 0

    def _load(self, key: str, now_us: int) -> Optional[int]:
        entry = self._buckets.get(key)
        if entry is None:
            return None
        state, expires_at_us = entry
        if expires_at_us <= now_us:
            del self._buckets[key]
            return None
        return state.tat_us

    def _purge(self, now_us: int) -> int:
        expired = [key for key, (_, expires_at) in self._buckets.items() if expires_at <= now_us]
        for key in expired:
            del self._buckets[key]
        return len(expired)

    async def _apply(
        self,
        evaluator: Callable[..., Tuple[Optional[int], Decision]],
        key: str,
        now_us: int,
        spec: RateSpec,
        units: int,
    ) -> Decision:
        async with self._lock:
            self._last_now_us = max(self._last_now_us, now_us)
            previous = self._load(key, now_us)
            new_tat, decision = evaluator(previous, now_us, spec, units)
            if decision.allowed:
                # Same TTL granularity as the Redis PX expiry
                ttl_us = max(US_PER_MS, -(-spec.burst_offset_us // US_PER_MS) * US_PER_MS)
                self._buckets[key] = (BucketState(new_tat), now_us + ttl_us)
                if len(self._buckets) >= self._purge_at:
                    self._purge(self._last_now_us)
                    # Next sweep once the map doubles
                    self._purge_at = max(self._purge_threshold, 2 * len(self._buckets))
            return decision

    async def allow_n(self, key: str, now_us: int, spec: RateSpec, cost: int) -> Decision:
        return await self._apply(evaluate, key, now_us, spec, cost)

    async def allow_at_most(self, key: str, now_us: int, spec: RateSpec, n: int) -> Decision:
        return await self._apply(evaluate_at_most, key, now_us, spec, n)

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._buckets.pop(key, None)

    async def server_time_us(self) -> int:
        return self._clock.now_us()

    async def get_state(self, key: str) -> Optional[BucketState]:
        """Stored state of a key, or None when absent or expired."""
        async with self._lock:
            entry = self._buckets.get(key)
            if entry is None or entry[1] <= self._last_now_us:
                return None
            return entry[0]

    async def cleanup(self, now_us: Optional[int] = None) -> int:
        """Drop expired buckets and return how many were removed.

        Args:
            now_us: Time to judge expiry against, in the same clock the
                decisions were made with. Defaults to the latest now_us
                seen by a decision.
        """
        async with self._lock:
            if now_us is None:
                now_us = self._last_now_us
            return self._purge(now_us)

    def __len__(self) -> int:
        return len(self._buckets)
