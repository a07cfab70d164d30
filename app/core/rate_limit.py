"""Rate limiting dependency for FastAPI routes.

Routes opt in per action::

    @router.post("/notes/{note_id}/like", dependencies=[Depends(rate_limit("like"))])

The limiter itself lives on ``app.state.rate_limiter`` (built by the app
factory on top of the key cache); limits come from ``settings.rate_limit``.

Scope: the caller's user id when one is known (``uid``), the client IP
otherwise (``ip``). Backend faults fail open inside the limiter.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Annotated, Callable

from fastapi import Header, HTTPException, Request, status

from app.adapters.rate_limit.base import AbstractRateLimiter
from app.core.config import settings
from app.core.identity import USER_ID_HEADER, resolve_user_id

logger = logging.getLogger(__name__)


def _scope_for(request: Request, x_user_id: str | None) -> tuple[str, str]:
    """Return ``(scope, identifier)`` for the limiter key."""

    user_id = resolve_user_id(request, x_user_id)
    if user_id is not None and user_id > 0:
        return "uid", str(user_id)

    client_host = request.client.host if request.client else "unknown"
    return "ip", client_host


def _hash_identifier(identifier: str) -> str:
    """Hash the limiter identifier for logging without exposing it."""
    return hashlib.sha256(identifier.encode()).hexdigest()[:16]


def rate_limit(action: str) -> Callable[..., None]:
    """Build a dependency enforcing the fixed-window rule for ``action``.

    Args:
        action: Action name (``login``, ``upload_image``, ``like``).

    Returns:
        A FastAPI dependency that raises HTTP 429 when the caller is over the limit.
    """

    def enforce(
        request: Request,
        x_user_id: Annotated[str | None, Header(alias=USER_ID_HEADER)] = None,
    ) -> None:
        if not settings.rate_limit.enabled:
            return

        rule = settings.rate_limit.rule_for(action)
        if not rule.enabled:
            return

        limiter: AbstractRateLimiter | None = getattr(request.app.state, "rate_limiter", None)
        if limiter is None:
            return

        scope, identifier = _scope_for(request, x_user_id)
        result = limiter.check(
            action,
            scope,
            identifier,
            limit=rule.limit,
            window_seconds=rule.window_seconds,
        )
        log_fields = {
            "action": action,
            "scope": scope,
            "key_hash": _hash_identifier(identifier),
            "limit": result.limit,
            "remaining": result.remaining,
            "window_s": rule.window_seconds,
        }

        if result.allowed:
            logger.debug("rate_limit.allowed", extra={**log_fields, "degraded": result.degraded})
            return

        retry_after = result.retry_after_seconds or rule.window_seconds
        logger.warning("rate_limit.exceeded", extra={**log_fields, "retry_after_s": retry_after})

        headers: dict[str, str] = {}
        if settings.rate_limit.include_headers:
            headers["Retry-After"] = str(retry_after)
            headers["X-RateLimit-Limit"] = str(result.limit)
            headers["X-RateLimit-Remaining"] = str(result.remaining)

        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Try again later.",
            headers=headers or None,
        )

    enforce.__name__ = f"rate_limit_{action}"
    return enforce
