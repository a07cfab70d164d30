"""Rate limiter interfaces.

The API depends on this abstraction (not the concrete implementation) so the
counting strategy can change without touching routes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window (0 when limiting is disabled).
        remaining: Remaining requests in the current window (0 when blocked).
        count: Hits counted in the current window, this one included.
        retry_after_seconds: Suggested wait time in seconds when blocked.
        degraded: True when the backend failed and the request was let through.
    """

    allowed: bool
    limit: int
    remaining: int
    count: int = 0
    retry_after_seconds: int | None = None
    degraded: bool = False


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    @abstractmethod
    def check(
        self,
        action: str,
        scope: str,
        identifier: str,
        *,
        limit: int,
        window_seconds: int,
    ) -> RateLimitResult:
        """Count one hit for ``(action, scope, identifier)`` and decide.

        Args:
            action: Protected action (e.g. ``login``, ``like``).
            scope: Identity kind, ``uid`` or ``ip``.
            identifier: User id or client address.
            limit: Max hits per window; <= 0 disables limiting.
            window_seconds: Window length; <= 0 disables limiting.

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError
