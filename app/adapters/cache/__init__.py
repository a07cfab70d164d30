"""Key cache adapters: one contract, Redis / in-memory / no-op backends."""

from app.adapters.cache.base import KeyCache
from app.adapters.cache.factory import create_key_cache
from app.adapters.cache.in_memory import InMemoryKeyCache
from app.adapters.cache.noop import NoOpKeyCache
from app.adapters.cache.redis_cache import RedisKeyCache

__all__ = [
    "InMemoryKeyCache",
    "KeyCache",
    "NoOpKeyCache",
    "RedisKeyCache",
    "create_key_cache",
]
