"""Tests for cache backend selection and cache-related settings."""

from unittest.mock import MagicMock, patch

import pytest

from app.adapters.cache import InMemoryKeyCache, NoOpKeyCache, create_key_cache
from app.adapters.cache.keys import note_key, note_likes_key, note_views_key, parse_counter_key, rate_limit_key
from app.core.config import CacheSettings, RateLimitRule, RateLimitSettings


def test_memory_backend() -> None:
    cache = create_key_cache(CacheSettings(backend="memory", max_entries=50))

    assert isinstance(cache, InMemoryKeyCache)
    assert cache.stats()["max_entries"] == 50


def test_none_backend() -> None:
    assert isinstance(create_key_cache(CacheSettings(backend="none")), NoOpKeyCache)


def test_redis_backend_uses_operation_timeout_for_requests() -> None:
    redis_cache = MagicMock()
    with patch("app.adapters.cache.factory.RedisKeyCache.check_reachable", return_value=True) as check, patch(
        "app.adapters.cache.factory.RedisKeyCache.from_url", return_value=redis_cache
    ) as from_url:
        cache = create_key_cache(
            CacheSettings(
                backend="redis",
                redis_url="redis://cache:6379/1",
                operation_timeout_ms=150,
                connect_timeout_ms=2500,
            )
        )

    assert cache is redis_cache
    assert check.call_args.kwargs["connect_timeout_ms"] == 2500
    args, kwargs = from_url.call_args
    assert args == ("redis://cache:6379/1",)
    assert kwargs["operation_timeout_ms"] == 150
    assert "connect_timeout_ms" not in kwargs
    assert kwargs["dirty_marker"] is not None
    kwargs["dirty_marker"].shutdown()


def test_unreachable_redis_degrades_to_noop() -> None:
    with patch("app.adapters.cache.factory.RedisKeyCache.check_reachable", return_value=False), patch(
        "app.adapters.cache.factory.RedisKeyCache.from_url"
    ) as from_url:
        cache = create_key_cache(CacheSettings(backend="redis"))

    assert isinstance(cache, NoOpKeyCache)
    from_url.assert_not_called()


def test_cache_settings_defaults() -> None:
    cfg = CacheSettings()

    assert cfg.operation_timeout_ms == 200
    assert cfg.note_ttl_seconds == 300


@pytest.mark.parametrize(
    ("action", "expected"),
    [
        ("login", RateLimitRule(10, 60)),
        ("upload_image", RateLimitRule(10, 60)),
        ("like", RateLimitRule(30, 60)),
        ("unknown", RateLimitRule(0, 0)),
    ],
)
def test_rate_limit_rules(action: str, expected: RateLimitRule) -> None:
    assert RateLimitSettings().rule_for(action) == expected


def test_disabled_rule() -> None:
    assert RateLimitRule(0, 60).enabled is False
    assert RateLimitRule(5, 0).enabled is False
    assert RateLimitRule(5, 60).enabled is True


def test_key_layout() -> None:
    assert note_key(42) == "note:42"
    assert note_views_key(42) == "note:42:views"
    assert note_likes_key(42) == "note:42:likes"
    assert rate_limit_key("login", "ip", "1.2.3.4") == "rl:login:ip:1.2.3.4"


@pytest.mark.parametrize(
    ("key", "expected"),
    [
        ("note:42:views", 42),
        ("note:7:likes", 7),
        ("note:42", None),
        ("note:x:views", None),
        ("note:1:shares", None),
        ("rl:like:uid:1", None),
    ],
)
def test_parse_counter_key(key: str, expected) -> None:
    assert parse_counter_key(key) == expected
