"""Caller identity for the notes routes.

Authentication itself happens upstream (gateway or auth middleware), which
stores the numeric user id on ``request.state.user_id``. For local
development ``APP_TRUST_USER_HEADER=true`` accepts an ``X-User-ID`` header
instead; never enable it behind a public edge.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Header, HTTPException, Request, status

from app.core.config import settings

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-ID"


def resolve_user_id(request: Request, header_value: str | None = None) -> int | None:
    """Return the caller's user id, or None when the request is anonymous."""

    user_id = getattr(request.state, "user_id", None)
    if user_id is not None:
        return int(user_id)

    if settings.app.trust_user_header and header_value and header_value.isdigit():
        return int(header_value)
    return None


def get_current_user_id(
    request: Request,
    x_user_id: Annotated[str | None, Header(alias=USER_ID_HEADER)] = None,
) -> int:
    """FastAPI dependency returning the authenticated user id.

    Raises:
        HTTPException: 401 when no identity is attached to the request.
    """

    user_id = resolve_user_id(request, x_user_id)
    if user_id is None:
        logger.info("auth.missing_identity", extra={"path": request.url.path})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
        )
    # Downstream dependencies (rate limiting) read the resolved id from state
    request.state.user_id = user_id
    return user_id
