"""GCRA rate limiting over a shared store.

This package provides the pure evaluator, the Redis Lua scripts that run it
atomically, the bucket stores and the Limiter call surface.
"""

from .evaluator import evaluate, evaluate_at_most
from .models import NEVER, NEVER_US, BucketState, Decision, RateSpec
from .redis_lua import GCRA_ALLOW_AT_MOST_SCRIPT, GCRA_ALLOW_N_SCRIPT
from .service import Limiter, create_limiter
from .store import BucketStore, InMemoryBucketStore, RedisBucketStore

__all__ = [
    "NEVER",
    "NEVER_US",
    "BucketState",
    "Decision",
    "RateSpec",
    "evaluate",
    "evaluate_at_most",
    "GCRA_ALLOW_N_SCRIPT",
    "GCRA_ALLOW_AT_MOST_SCRIPT",
    "BucketStore",
    "InMemoryBucketStore",
    "RedisBucketStore",
    "Limiter",
    "create_limiter",
]
