"""Rate limiting adapters.

The HTTP layer depends on ``AbstractRateLimiter`` only; the fixed-window
implementation stores its counters in whatever KeyCache backend is configured.
"""

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from app.adapters.rate_limit.fixed_window import FixedWindowRateLimiter

__all__ = ["AbstractRateLimiter", "FixedWindowRateLimiter", "RateLimitResult"]
