"""Rate limiting."""

from .limiter import (
    DEFAULT_LIMITS,
    DEFAULT_STORAGE_URI,
    IRateLimiter,
    RateDecision,
    RateLimiter,
)

__all__ = [
    "DEFAULT_LIMITS",
    "DEFAULT_STORAGE_URI",
    "IRateLimiter",
    "RateDecision",
    "RateLimiter",
]
