"""In-process key cache.

Single-process backend for development and tests: thread-safe, TTL-aware,
with LRU eviction once ``max_entries`` is reached. Values are stored in their
serialized JSON form so hits behave exactly like the Redis backend (callers
get fresh objects, malformed payloads fail the same way).

Note:
    Per-process only. Running several workers gives each its own counters,
    dirty set and rate-limit windows.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

from app.adapters.cache.base import KeyCache, decode_value, encode_value, parse_int
from app.adapters.cache.keys import DIRTY_NOTE_SET_KEY, parse_counter_key
from app.core.errors import CacheSerializationError

logger = logging.getLogger(__name__)


@dataclass
class CacheItem:
    """Stored value with optional absolute expiry (clock seconds)."""

    value: bytes | int | set[str]
    expires_at: float | None = None


class InMemoryKeyCache(KeyCache):
    """Dict-backed KeyCache guarded by a re-entrant lock.

    Attributes:
        max_entries: Maximum number of keys kept (None for unlimited).
    """

    backend_name = "memory"

    def __init__(
        self,
        *,
        max_entries: int | None = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_entries = max_entries
        self._clock = clock
        self._store: OrderedDict[str, CacheItem] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InMemoryKeyCache(max_entries={self._max_entries}, size={len(self._store)}, "
            f"hits={self._hits}, misses={self._misses}, evictions={self._evictions})"
        )

    def get(self, key: str, shape: Any = Any) -> tuple[Any, bool]:
        with self._lock:
            item = self._live_item_locked(key)
            if item is None:
                self._misses += 1
                logger.debug("cache.miss", extra={"cache_key": key})
                return None, False
            self._hits += 1
            self._store.move_to_end(key)
            raw = item.value

        if isinstance(raw, set):
            raise CacheSerializationError(
                code="cache_wrong_type",
                message=f"Cache key {key} holds a set",
                details={"key": key},
            )
        if isinstance(raw, int):
            raw = str(raw).encode()
        logger.debug("cache.hit", extra={"cache_key": key})
        return decode_value(key, raw, shape), True

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        payload = encode_value(key, value)
        with self._lock:
            self._evict_expired_locked()
            self._store[key] = CacheItem(value=payload, expires_at=self._clock() + ttl_seconds)
            self._store.move_to_end(key)
            self._evict_if_over_capacity_locked()

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def increment(self, key: str, delta: int = 1) -> int:
        with self._lock:
            item = self._live_item_locked(key)
            if item is None:
                item = CacheItem(value=0)
                self._store[key] = item
            current = self._int_value(key, item)
            item.value = current + delta
            self._store.move_to_end(key)

            note_id = parse_counter_key(key)
            if note_id is not None:
                self._mark_dirty_locked(note_id)

            self._evict_if_over_capacity_locked()
            return current + delta

    def expire(self, key: str, ttl_seconds: int) -> None:
        with self._lock:
            item = self._live_item_locked(key)
            if item is not None:
                item.expires_at = self._clock() + ttl_seconds

    def ttl(self, key: str) -> int | None:
        with self._lock:
            item = self._live_item_locked(key)
            if item is None or item.expires_at is None:
                return None
            return max(0, int(math.ceil(item.expires_at - self._clock())))

    def get_and_clear(self, key: str) -> int:
        with self._lock:
            item = self._live_item_locked(key)
            if item is None:
                return 0
            value = self._int_value(key, item)
            del self._store[key]
            return value

    def pop_dirty_ids(self) -> set[int]:
        with self._lock:
            item = self._store.pop(DIRTY_NOTE_SET_KEY, None)
        if item is None or not isinstance(item.value, set):
            return set()
        return {int(member) for member in item.value}

    def clear(self) -> None:
        """Remove all entries and reset counters."""

        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> dict[str, int | None]:
        """Return lightweight cache metrics without exposing values."""

        with self._lock:
            return {
                "max_entries": self._max_entries,
                "entries": len(self._store),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    @staticmethod
    def _int_value(key: str, item: CacheItem) -> int:
        if isinstance(item.value, set):
            raise CacheSerializationError(
                code="cache_wrong_type",
                message=f"Cache key {key} holds a set",
                details={"key": key},
            )
        return parse_int(key, item.value)

    def _mark_dirty_locked(self, note_id: int) -> None:
        item = self._store.get(DIRTY_NOTE_SET_KEY)
        if item is None or not isinstance(item.value, set):
            item = CacheItem(value=set())
            self._store[DIRTY_NOTE_SET_KEY] = item
        item.value.add(str(note_id))

    def _live_item_locked(self, key: str) -> CacheItem | None:
        item = self._store.get(key)
        if item is None:
            return None
        if item.expires_at is not None and item.expires_at <= self._clock():
            del self._store[key]
            self._evictions += 1
            return None
        return item

    def _evict_expired_locked(self) -> None:
        now = self._clock()
        expired = [
            k for k, item in self._store.items()
            if item.expires_at is not None and item.expires_at <= now
        ]
        for key in expired:
            del self._store[key]
            self._evictions += 1

    def _evict_if_over_capacity_locked(self) -> None:
        if self._max_entries is None:
            return

        while len(self._store) > self._max_entries:
            victim = self._pick_victim_locked()
            if victim is None:
                return
            del self._store[victim]
            self._evictions += 1

    def _pick_victim_locked(self) -> str | None:
        # LRU order, snapshots and rate-limit windows before pending counters;
        # the dirty set is never evicted so pending ids are not orphaned
        counter_victim = None
        for key in self._store:
            if key == DIRTY_NOTE_SET_KEY:
                continue
            if parse_counter_key(key) is None:
                return key
            if counter_victim is None:
                counter_victim = key
        return counter_victim
