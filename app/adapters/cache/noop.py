"""No-op key cache used when no backend is configured or reachable.

Every operation succeeds and nothing is stored: reads always miss, counters
stay at 0 and the dirty set is always empty. Views/likes then only reach the
durable store through other paths; the service keeps working without the
performance layer.
"""

from __future__ import annotations

from typing import Any

from app.adapters.cache.base import KeyCache


class NoOpKeyCache(KeyCache):
    """KeyCache that stores nothing."""

    backend_name = "none"

    def get(self, key: str, shape: Any = Any) -> tuple[Any, bool]:
        return None, False

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        return None

    def delete(self, key: str) -> None:
        return None

    def increment(self, key: str, delta: int = 1) -> int:
        return 0

    def expire(self, key: str, ttl_seconds: int) -> None:
        return None

    def ttl(self, key: str) -> int | None:
        return None

    def get_and_clear(self, key: str) -> int:
        return 0

    def pop_dirty_ids(self) -> set[int]:
        return set()
