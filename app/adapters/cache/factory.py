"""Factory for key cache backends."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

from app.adapters.cache.base import KeyCache
from app.adapters.cache.in_memory import InMemoryKeyCache
from app.adapters.cache.noop import NoOpKeyCache
from app.adapters.cache.redis_cache import RedisKeyCache
from app.core.config import CacheSettings

logger = logging.getLogger(__name__)


def create_key_cache(cache_settings: CacheSettings) -> KeyCache:
    """Build the configured cache backend.

    A Redis backend that does not answer the startup ping degrades to the
    no-op cache instead of failing startup: counting and reads keep working
    against the durable store, only the cache layer is lost.

    Args:
        cache_settings: Resolved cache settings.

    Returns:
        KeyCache: Redis, in-memory or no-op backend.
    """
    backend = cache_settings.backend

    if backend == "none":
        logger.info("cache.disabled", extra={"backend": backend})
        return NoOpKeyCache()

    if backend == "memory":
        logger.info("cache.ready", extra={"backend": backend})
        return InMemoryKeyCache(max_entries=cache_settings.max_entries)

    if not RedisKeyCache.check_reachable(
        cache_settings.redis_url,
        password=cache_settings.redis_password,
        connect_timeout_ms=cache_settings.connect_timeout_ms,
    ):
        logger.warning(
            "cache.unavailable_fallback_noop",
            extra={"backend": backend, "fallback": NoOpKeyCache.backend_name},
        )
        return NoOpKeyCache()

    cache = RedisKeyCache.from_url(
        cache_settings.redis_url,
        password=cache_settings.redis_password,
        operation_timeout_ms=cache_settings.operation_timeout_ms,
        dirty_marker=ThreadPoolExecutor(max_workers=2, thread_name_prefix="dirty-mark"),
        max_pending_marks=cache_settings.max_pending_dirty_marks,
    )
    logger.info("cache.ready", extra={"backend": backend})
    return cache
