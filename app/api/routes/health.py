from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint.

    The service stays ``ok`` when the cache is down (every cache consumer
    degrades); the cache status is reported for monitoring only.

    Returns:
        dict: ``status``, the cache backend name, whether it answers a ping
        and whether the counter sync worker is running.
    """

    cache = request.app.state.cache
    worker = request.app.state.counter_sync
    return {
        "status": "ok",
        "cache": {"backend": cache.backend_name, "reachable": cache.ping()},
        "counter_sync": {"running": worker.is_running, "state": worker.state.value},
    }
