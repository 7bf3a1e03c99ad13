"""Request gating utilities."""
from .rate_limit import FixedWindowRateLimiter, RateLimitExceededError

__all__ = ["FixedWindowRateLimiter", "RateLimitExceededError"]
