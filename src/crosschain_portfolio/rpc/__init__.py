"""Request infrastructure with retry logic and caching."""

from crosschain_portfolio.rpc.cache import CacheEntry, TTLCache
from crosschain_portfolio.rpc.retry import (
    FailureKind,
    RetryExhaustedError,
    RetryPolicy,
    classify_failure,
    default_backoff,
)

__all__ = [
    "CacheEntry",
    "FailureKind",
    "RetryExhaustedError",
    "RetryPolicy",
    "TTLCache",
    "classify_failure",
    "default_backoff",
]
