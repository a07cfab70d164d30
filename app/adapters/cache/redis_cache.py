"""Redis-backed key cache.

Uses the synchronous redis-py client. Every command is bounded by the
client's ``socket_timeout`` so a slow or unavailable Redis cannot stall a
request for longer than the configured operation timeout.

Structure:
    note:{id}              JSON snapshot of a note (SET ... EX ttl)
    note:{id}:views|likes  integer delta (INCRBY / GETDEL)
    note:counters:dirty    SET of note ids with pending deltas
    rl:{action}:{scope}:{identifier}   fixed-window counter
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor
from typing import Any, Callable, TypeVar

import redis
from redis.exceptions import RedisError

from app.adapters.cache.base import KeyCache, decode_value, encode_value, parse_int
from app.adapters.cache.keys import DIRTY_NOTE_SET_KEY, parse_counter_key
from app.core.errors import CacheBackendError

logger = logging.getLogger(__name__)

R = TypeVar("R")


class RedisKeyCache(KeyCache):
    """KeyCache on top of a ``redis.Redis`` client.

    Args:
        client: Configured client. ``decode_responses=True`` is expected but
            bytes replies are handled as well.
        dirty_marker: Optional executor used to mark note ids dirty without
            blocking ``increment``. When omitted the mark runs inline; its
            failures are swallowed either way.
        max_pending_marks: Dirty marks allowed in flight on ``dirty_marker``.
            Further marks are dropped until the backlog drains; the counter
            key keeps its delta and the next increment re-marks the id.
    """

    backend_name = "redis"

    def __init__(
        self,
        client: redis.Redis,
        *,
        dirty_marker: Executor | None = None,
        max_pending_marks: int = 1024,
    ) -> None:
        self._redis = client
        self._dirty_marker = dirty_marker
        self._mark_slots = threading.BoundedSemaphore(max_pending_marks)

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        password: str | None = None,
        operation_timeout_ms: int = 200,
        dirty_marker: Executor | None = None,
        max_pending_marks: int = 1024,
    ) -> "RedisKeyCache":
        """Build the request-path client.

        Reconnects are bounded by the operation timeout as well, so a Redis
        host that stops answering costs at most ``operation_timeout_ms`` per
        command.
        """
        timeout = operation_timeout_ms / 1000
        return cls(
            redis.Redis.from_url(url, **_client_kwargs(password, timeout, timeout)),
            dirty_marker=dirty_marker,
            max_pending_marks=max_pending_marks,
        )

    @staticmethod
    def check_reachable(url: str, *, password: str | None = None, connect_timeout_ms: int = 2000) -> bool:
        """Ping ``url`` once with a throwaway client and the longer startup timeout."""

        timeout = connect_timeout_ms / 1000
        client = redis.Redis.from_url(url, **_client_kwargs(password, timeout, timeout))
        try:
            return bool(client.ping())
        except RedisError as exc:
            logger.debug("cache.startup_ping_failed", extra={"error_type": type(exc).__name__})
            return False
        finally:
            client.close()

    def _call(self, operation: str, key: str, fn: Callable[[], R]) -> R:
        try:
            return fn()
        except RedisError as exc:
            logger.debug(
                "cache.backend_error",
                extra={"operation": operation, "cache_key": key, "error_type": type(exc).__name__},
            )
            raise CacheBackendError(
                code="cache_backend_unavailable",
                message=f"Redis {operation} failed: {exc}",
                details={"key": key, "backend": self.backend_name, "operation": operation},
            ) from exc

    def get(self, key: str, shape: Any = Any) -> tuple[Any, bool]:
        raw = self._call("get", key, lambda: self._redis.get(key))
        if raw is None:
            return None, False
        return decode_value(key, raw, shape), True

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        payload = encode_value(key, value)
        self._call("set", key, lambda: self._redis.set(key, payload, ex=ttl_seconds))

    def delete(self, key: str) -> None:
        self._call("delete", key, lambda: self._redis.delete(key))

    def increment(self, key: str, delta: int = 1) -> int:
        new_value = self._call("incrby", key, lambda: self._redis.incrby(key, delta))

        note_id = parse_counter_key(key)
        if note_id is not None:
            self._dispatch_dirty_mark(note_id)

        return int(new_value)

    def expire(self, key: str, ttl_seconds: int) -> None:
        self._call("expire", key, lambda: self._redis.expire(key, ttl_seconds))

    def ttl(self, key: str) -> int | None:
        remaining = int(self._call("ttl", key, lambda: self._redis.ttl(key)))
        # -2: missing key, -1: no expiry
        return remaining if remaining >= 0 else None

    def get_and_clear(self, key: str) -> int:
        raw = self._call("getdel", key, lambda: self._redis.getdel(key))
        return parse_int(key, raw)

    def pop_dirty_ids(self) -> set[int]:
        def _pop() -> list[Any]:
            pipe = self._redis.pipeline(transaction=True)
            pipe.smembers(DIRTY_NOTE_SET_KEY)
            pipe.delete(DIRTY_NOTE_SET_KEY)
            return pipe.execute()

        members, _ = self._call("pop_dirty", DIRTY_NOTE_SET_KEY, _pop)

        note_ids: set[int] = set()
        for member in members or ():
            text = member.decode() if isinstance(member, bytes) else str(member)
            if text.isdigit():
                note_ids.add(int(text))
            else:
                logger.warning("cache.dirty_member_invalid", extra={"member": text[:32]})
        return note_ids

    def ping(self) -> bool:
        try:
            return bool(self._redis.ping())
        except RedisError:
            return False

    def close(self) -> None:
        if self._dirty_marker is not None:
            # queued marks are dropped; their counters are re-marked on the next increment
            self._dirty_marker.shutdown(wait=True, cancel_futures=True)
        self._redis.close()

    def _dispatch_dirty_mark(self, note_id: int) -> None:
        if self._dirty_marker is None:
            self._mark_dirty(note_id)
            return
        if not self._mark_slots.acquire(blocking=False):
            logger.debug("cache.dirty_mark_dropped", extra={"note_id": note_id})
            return
        try:
            future = self._dirty_marker.submit(self._mark_dirty, note_id)
        except RuntimeError:
            # Executor already shut down; the next increment of this counter re-marks the id
            self._mark_slots.release()
            logger.debug("cache.dirty_mark_skipped", extra={"note_id": note_id})
            return
        future.add_done_callback(lambda _: self._mark_slots.release())

    def _mark_dirty(self, note_id: int) -> None:
        try:
            self._redis.sadd(DIRTY_NOTE_SET_KEY, str(note_id))
        except RedisError as exc:
            logger.debug(
                "cache.dirty_mark_failed",
                extra={"note_id": note_id, "error_type": type(exc).__name__},
            )


def _client_kwargs(password: str | None, socket_timeout: float, connect_timeout: float) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "socket_timeout": socket_timeout,
        "socket_connect_timeout": connect_timeout,
        "decode_responses": True,
    }
    if password:
        kwargs["password"] = password
    return kwargs
