"""Fixed-window rate limiter on top of the key cache.

The window starts at the first hit: the counter key gets its expiry when the
increment returns 1 and the expiry is never refreshed afterwards. A burst
right before expiry followed by a burst right after it is therefore allowed
(up to twice the limit across the boundary); that is the fixed-window trade-off.

Backend faults fail open: the request is allowed, the fault goes to the error
sink, and the caller never sees it.
"""

from __future__ import annotations

import logging

from app.adapters.cache.base import KeyCache
from app.adapters.cache.keys import rate_limit_key
from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from app.core.error_sink import ErrorSink, safe_report
from app.core.errors import CacheError

logger = logging.getLogger(__name__)


class FixedWindowRateLimiter(AbstractRateLimiter):
    """Per-key fixed-window counter using ``increment`` + ``expire``."""

    def __init__(self, cache: KeyCache, *, error_sink: ErrorSink | None = None) -> None:
        self._cache = cache
        self._error_sink = error_sink

    def check(
        self,
        action: str,
        scope: str,
        identifier: str,
        *,
        limit: int,
        window_seconds: int,
    ) -> RateLimitResult:
        if limit <= 0 or window_seconds <= 0:
            return RateLimitResult(allowed=True, limit=0, remaining=0)

        key = rate_limit_key(action, scope, identifier)

        try:
            count = self._cache.increment(key)
            if count == 1:
                self._cache.expire(key, window_seconds)
        except CacheError as exc:
            safe_report(
                self._error_sink,
                "rate_limit.backend_error",
                exc,
                action=action,
                scope=scope,
            )
            return RateLimitResult(allowed=True, limit=limit, remaining=limit, degraded=True)

        if count <= limit:
            return RateLimitResult(
                allowed=True,
                limit=limit,
                remaining=limit - count,
                count=count,
            )

        return RateLimitResult(
            allowed=False,
            limit=limit,
            remaining=0,
            count=count,
            retry_after_seconds=self._retry_after(key, window_seconds),
        )

    def _retry_after(self, key: str, window_seconds: int) -> int:
        try:
            remaining = self._cache.ttl(key)
            if remaining is None:
                # First-hit expire was lost; without a TTL the key would block forever
                self._cache.expire(key, window_seconds)
                return window_seconds
        except CacheError:
            logger.debug("rate_limit.ttl_unavailable", extra={"window_s": window_seconds})
            return window_seconds
        return remaining
