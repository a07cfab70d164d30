"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the environment before ``app.core.config`` builds the settings, so
no .env file is read and no Redis or database server is needed.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("DB_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("COUNTER_SYNC_ENABLED", "false")
os.environ.setdefault("APP_TRUST_USER_HEADER", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from typing import Any, Iterator  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.adapters.cache import InMemoryKeyCache  # noqa: E402
from app.core.error_sink import ErrorSink  # noqa: E402
from app.repositories import InMemoryNoteRepository  # noqa: E402
from app.schemas.note import Note  # noqa: E402


class RecordingErrorSink(ErrorSink):
    """Error sink that keeps every report for assertions."""

    def __init__(self) -> None:
        self.reports: list[tuple[str, BaseException, dict[str, Any]]] = []

    def report(self, event: str, error: BaseException, **context: Any) -> None:
        self.reports.append((event, error, context))

    @property
    def events(self) -> list[str]:
        return [event for event, _, _ in self.reports]


class FakeClock:
    """Deterministic clock used to test expiration logic."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


def make_note(**overrides: Any) -> Note:
    base: dict[str, Any] = {
        "title": "Cache design",
        "summary": "Notes on cache-aside",
        "content": "Read-through, invalidate on write.",
        "author_id": 7,
        "tags": ["redis"],
        "is_public": True,
    }
    base.update(overrides)
    return Note(**base)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> InMemoryKeyCache:
    return InMemoryKeyCache(max_entries=None, clock=clock)


@pytest.fixture
def repo() -> InMemoryNoteRepository:
    return InMemoryNoteRepository()


@pytest.fixture
def sink() -> RecordingErrorSink:
    return RecordingErrorSink()


@pytest.fixture
def client(cache: InMemoryKeyCache, repo: InMemoryNoteRepository, sink: RecordingErrorSink) -> Iterator[TestClient]:
    """TestClient over an app wired to the in-memory cache and repository."""

    from app.core.app_factory import create_app

    app = create_app(cache=cache, repository=repo, error_sink=sink)
    with TestClient(app) as test_client:
        yield test_client
