"""Distributed GCRA rate limiting over Redis."""

from cellgate.exceptions import (
    ClockSkewWarning,
    InvalidSpecError,
    RateLimitError,
    RateLimitExceededError,
    StoreUnavailableError,
)
from cellgate.services.gcra import (
    NEVER,
    BucketStore,
    Decision,
    InMemoryBucketStore,
    Limiter,
    RateSpec,
    RedisBucketStore,
    create_limiter,
)

__all__ = [
    "ClockSkewWarning",
    "InvalidSpecError",
    "RateLimitError",
    "RateLimitExceededError",
    "StoreUnavailableError",
    "NEVER",
    "BucketStore",
    "Decision",
    "InMemoryBucketStore",
    "Limiter",
    "RateSpec",
    "RedisBucketStore",
    "create_limiter",
]
