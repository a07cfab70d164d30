"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Core components (cache, rate limiter, sync worker, repositories) never read
this module directly; the app factory passes plain values into them.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and not os.getenv("TESTING"):
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


@dataclass(frozen=True)
class RateLimitRule:
    """Fixed-window rule for one action.

    A non-positive limit or window disables limiting for the action.
    """

    limit: int
    window_seconds: int

    @property
    def enabled(self) -> bool:
        return self.limit > 0 and self.window_seconds > 0


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    title: str = Field(
        "Notes API",
        description="Service title shown in OpenAPI docs",
    )
    trust_user_header: bool = Field(
        False,
        description=(
            "Accept the X-User-ID header as the authenticated identity. "
            "Only for development setups without an auth layer in front."
        ),
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field("json", description="Log line format")
    output: Literal["stdout", "file"] = Field("stdout", description="Log destination")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate log file after this many bytes (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Number of rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read/propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class CacheSettings(BaseSettings):
    """Key cache backend configuration."""

    backend: Literal["redis", "memory", "none"] = Field(
        "redis",
        description="Cache backend: redis, in-process memory, or none (no-op)",
    )
    redis_url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL",
    )
    redis_password: str | None = Field(
        None,
        description="Redis AUTH password (overrides any password in the URL)",
    )
    operation_timeout_ms: int = Field(
        200,
        description="Socket and reconnect timeout applied to every cache command",
        ge=1,
    )
    connect_timeout_ms: int = Field(
        2000,
        description="Timeout for the startup connectivity check",
        ge=1,
    )
    max_pending_dirty_marks: int = Field(
        1024,
        description="Dirty-set marks allowed in flight before new marks are dropped",
        ge=1,
    )
    note_ttl_seconds: int = Field(
        300,
        description="TTL of cached note snapshots",
        ge=1,
    )
    max_entries: int | None = Field(
        10_000,
        description="Maximum entries held by the memory backend (None for unlimited)",
    )

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        case_sensitive=False,
    )


class CounterSyncSettings(BaseSettings):
    """Write-behind counter synchronization configuration."""

    enabled: bool = Field(
        True,
        description="Run the background counter sync worker",
    )
    interval_seconds: float = Field(
        10.0,
        description="Delay between two sync cycles",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="COUNTER_SYNC_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Per-action fixed-window rate limits."""

    enabled: bool = Field(
        True,
        description="Enable rate limiting globally",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )
    login_limit: int = Field(10, description="Login attempts allowed per window")
    login_window: int = Field(60, description="Login window size in seconds")
    upload_limit: int = Field(10, description="Image uploads allowed per window")
    upload_window: int = Field(60, description="Upload window size in seconds")
    like_limit: int = Field(30, description="Likes allowed per window")
    like_window: int = Field(60, description="Like window size in seconds")

    model_config = SettingsConfigDict(
        env_prefix="RL_",
        case_sensitive=False,
    )

    def rule_for(self, action: str) -> RateLimitRule:
        """Return the configured rule for an action.

        Unknown actions get a disabled rule.
        """

        rules = {
            "login": RateLimitRule(self.login_limit, self.login_window),
            "upload_image": RateLimitRule(self.upload_limit, self.upload_window),
            "like": RateLimitRule(self.like_limit, self.like_window),
        }
        return rules.get(action, RateLimitRule(0, 0))


class DatabaseSettings(BaseSettings):
    """Durable note store configuration."""

    url: str = Field(
        "sqlite+pysqlite:///./notes.db",
        description="SQLAlchemy database URL",
    )
    echo: bool = Field(False, description="Log SQL statements")

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.

    Environments:
    - development: Local development (DEBUG=true)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    counter_sync: CounterSyncSettings = Field(default_factory=CounterSyncSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
