"""Key cache interface.

Request handlers, the cache-aside repository, the rate limiter and the
counter sync worker depend on this abstraction only, so the backend can be
Redis, an in-process store or nothing at all.

Failure model:
- absence of a key is never an error (miss / 0 / empty set)
- backend faults raise ``CacheBackendError``
- malformed payloads and unserializable values raise ``CacheSerializationError``
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any, TypeVar

from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError, to_json

from app.core.errors import CacheSerializationError

T = TypeVar("T")


@lru_cache(maxsize=128)
def _adapter_for(shape: Any) -> TypeAdapter[Any]:
    return TypeAdapter(shape)


def encode_value(key: str, value: Any) -> bytes:
    """Serialize a value (pydantic models included) to JSON bytes."""

    try:
        return to_json(value)
    except PydanticSerializationError as exc:
        raise CacheSerializationError(
            code="cache_serialize_failed",
            message=f"Cannot serialize value for cache key {key}",
            details={"key": key, "hint": str(exc)},
        ) from exc


def decode_value(key: str, raw: str | bytes, shape: Any) -> Any:
    """Deserialize JSON into ``shape`` using a pydantic TypeAdapter."""

    try:
        return _adapter_for(shape).validate_json(raw)
    except ValidationError as exc:
        raise CacheSerializationError(
            code="cache_deserialize_failed",
            message=f"Malformed cached payload for key {key}",
            details={"key": key, "hint": exc.title},
        ) from exc


def parse_int(key: str, raw: str | bytes | int | None) -> int:
    """Parse a stored counter value; absent values count as 0."""

    if raw is None or raw == "" or raw == b"":
        return 0
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise CacheSerializationError(
            code="cache_not_integer",
            message=f"Cache key {key} does not hold an integer",
            details={"key": key},
        ) from exc


class KeyCache(ABC):
    """Key-value cache with TTLs, atomic counters and a dirty-id set."""

    backend_name: str = "abstract"

    @abstractmethod
    def get(self, key: str, shape: Any = Any) -> tuple[Any, bool]:
        """Fetch and deserialize a cached value.

        Args:
            key: Cache key.
            shape: Destination type (pydantic model, ``dict[str, int]``, ...).

        Returns:
            ``(value, True)`` on a hit, ``(None, False)`` on a miss.

        Raises:
            CacheSerializationError: Stored payload does not fit ``shape``.
            CacheBackendError: Backend unreachable or timed out.
        """
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store a JSON-serialized value with a TTL."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key. Deleting a missing key succeeds."""
        raise NotImplementedError

    @abstractmethod
    def increment(self, key: str, delta: int = 1) -> int:
        """Atomically add ``delta`` and return the new value.

        Counter keys (``note:{id}:views|likes``) also mark their note id dirty
        on a best-effort basis; a failed mark is swallowed.
        """
        raise NotImplementedError

    @abstractmethod
    def expire(self, key: str, ttl_seconds: int) -> None:
        """Set the TTL of an existing key."""
        raise NotImplementedError

    @abstractmethod
    def ttl(self, key: str) -> int | None:
        """Remaining lifetime in seconds; None if missing or without expiry."""
        raise NotImplementedError

    @abstractmethod
    def get_and_clear(self, key: str) -> int:
        """Atomically read an integer and delete the key; 0 when absent."""
        raise NotImplementedError

    @abstractmethod
    def pop_dirty_ids(self) -> set[int]:
        """Atomically read and empty the dirty note id set."""
        raise NotImplementedError

    def ping(self) -> bool:
        """Return True when the backend answers."""
        return True

    def close(self) -> None:
        """Release backend resources."""
        return None
