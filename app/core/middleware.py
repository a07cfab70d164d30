"""HTTP middleware for request ID propagation.

Accepts the incoming request id header (``LOG_REQUEST_ID_HEADER``) or
generates a UUID, exposes it to logging through a context variable, and
echoes it back together with the request duration.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response

from app.core.config import settings
from app.core.logging import clear_request_id, set_request_id

logger = logging.getLogger(__name__)


async def request_id_middleware(request: Request, call_next) -> Response:
    """Attach a request id to the logging context and the response.

    Args:
        request: The incoming HTTP request.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response with ``X-Request-ID`` (or the configured header) and
        ``X-Request-Duration-ms`` headers.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "http.request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
