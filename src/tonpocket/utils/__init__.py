"""Utility modules for tonpocket."""

from tonpocket.utils.cache import CacheHit, CacheKind, ResultCache
from tonpocket.utils.ratelimit import ActionRateLimiter
from tonpocket.utils.retry import RateLimitedFetcher, is_rate_limit_error
from tonpocket.utils.security import SecurityEventLog

__all__ = [
    "ActionRateLimiter",
    "CacheHit",
    "CacheKind",
    "RateLimitedFetcher",
    "ResultCache",
    "SecurityEventLog",
    "is_rate_limit_error",
]
