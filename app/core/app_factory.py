"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) and
the lifetime of the shared components:

- key cache (Redis / in-memory / no-op, from ``settings.cache``)
- durable repository wrapped by the cache-aside repository
- fixed-window rate limiter on the key cache
- counter sync worker (started on startup, stopped before the cache closes)

Components are kept on ``app.state`` so dependencies and tests reach them
without module globals.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.adapters.cache import KeyCache, create_key_cache
from app.adapters.rate_limit import FixedWindowRateLimiter
from app.api.routes import health_router, notes_router
from app.core.config import settings
from app.core.error_sink import ErrorSink, LoggingErrorSink
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.repositories import CachedNoteRepository, NoteRepository, SqlAlchemyNoteRepository
from app.services.counter_sync import CounterSyncWorker
from app.services.note_service import NoteService

logger = logging.getLogger(__name__)

WORKER_STOP_TIMEOUT_SECONDS = 30.0


def create_app(
    *,
    cache: KeyCache | None = None,
    repository: NoteRepository | None = None,
    error_sink: ErrorSink | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        cache: Key cache to use instead of the configured backend.
        repository: Durable repository to use instead of the SQLAlchemy one.
        error_sink: Sink for absorbed faults (defaults to structured logs).

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        sink = error_sink or LoggingErrorSink()
        key_cache = cache or create_key_cache(settings.cache)

        owned_store: SqlAlchemyNoteRepository | None = None
        store = repository
        if store is None:
            owned_store = SqlAlchemyNoteRepository(settings.database.url, echo=settings.database.echo)
            store = owned_store

        notes = CachedNoteRepository(
            store,
            key_cache,
            ttl_seconds=settings.cache.note_ttl_seconds,
            error_sink=sink,
        )
        worker = CounterSyncWorker(
            key_cache,
            notes,
            interval_seconds=settings.counter_sync.interval_seconds,
            error_sink=sink,
        )

        app.state.cache = key_cache
        app.state.notes = notes
        app.state.note_service = NoteService(notes, key_cache, error_sink=sink)
        app.state.rate_limiter = FixedWindowRateLimiter(key_cache, error_sink=sink)
        app.state.counter_sync = worker

        # Without a cache there are no deltas to reconcile
        if settings.counter_sync.enabled and key_cache.backend_name != "none":
            worker.start()

        logger.info(
            "app.started",
            extra={
                "cache_backend": key_cache.backend_name,
                "counter_sync": worker.is_running,
            },
        )
        try:
            yield
        finally:
            worker.stop(WORKER_STOP_TIMEOUT_SECONDS, flush=key_cache.backend_name != "none")
            key_cache.close()
            if owned_store is not None:
                owned_store.dispose()
            logger.info("app.stopped")

    app = FastAPI(
        title=settings.app.title,
        description=(
            "Notes API with a key cache in front of the durable store: cached "
            "note reads, write-behind view/like counters and per-action rate limits."
        ),
        version="0.1.0",
        debug=settings.app.debug,
        lifespan=lifespan,
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(notes_router, prefix="/v1")
    app.include_router(health_router)

    return app
