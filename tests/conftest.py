"""Shared fixtures for limiter tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from cellgate.core.clock import ManualClock
from cellgate.services.gcra.evaluator import evaluate, evaluate_at_most
from cellgate.services.gcra.models import BucketState, RateSpec
from cellgate.services.gcra.redis_lua import GCRA_ALLOW_AT_MOST_SCRIPT, GCRA_ALLOW_N_SCRIPT

# 2026-01-01T00:00:00Z in microseconds
EPOCH_US = 1_767_225_600_000_000


@pytest.fixture
def clock():
    return ManualClock(start_us=EPOCH_US)


@pytest.fixture
def mock_redis():
    """Create a mock Redis client for testing.

    eval() emulates the GCRA Lua scripts with the Python evaluator:
    - KEYS[1]: bucket key
    - ARGV[1]: now_us
    - ARGV[2]: emission_interval_us
    - ARGV[3]: burst
    - ARGV[4]: cost / n
    """
    redis = MagicMock()
    redis.data = {}
    redis.expires = {}
    redis.calls = []

    def load(key, now_us):
        if key in redis.expires and redis.expires[key] <= now_us:
            redis.data.pop(key, None)
            redis.expires.pop(key, None)
        state = BucketState.decode(redis.data.get(key))
        return state.tat_us if state else None

    async def mock_eval(script, num_keys, *args):
        redis.calls.append((script, num_keys, args))
        key = args[0]
        now_us, interval_us, burst, units = (int(a) for a in args[1:5])
        # Rebuild a spec with the same interval and burst
        spec = RateSpec(permitted=1, period_us=interval_us, burst=burst)
        evaluator = evaluate if script == GCRA_ALLOW_N_SCRIPT else evaluate_at_most
        assert script in (GCRA_ALLOW_N_SCRIPT, GCRA_ALLOW_AT_MOST_SCRIPT)

        new_tat, decision = evaluator(load(key, now_us), now_us, spec, units)
        if decision.allowed:
            ttl_ms = max(1, -(-spec.burst_offset_us // 1000))
            redis.data[key] = BucketState(new_tat).encode().encode()
            redis.expires[key] = now_us + ttl_ms * 1000
        return [decision.admitted, decision.remaining, decision.retry_after_us, decision.reset_after_us]

    async def mock_get(key):
        return redis.data.get(key)

    async def mock_delete(key):
        existed = key in redis.data
        redis.data.pop(key, None)
        redis.expires.pop(key, None)
        return int(existed)

    redis.eval = mock_eval
    redis.get = mock_get
    redis.delete = mock_delete
    redis.time = AsyncMock(return_value=(EPOCH_US // 1_000_000, EPOCH_US % 1_000_000))
    redis.aclose = AsyncMock()

    return redis
