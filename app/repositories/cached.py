"""Cache-aside decorator for a note repository.

Policy:
- ``find_by_id`` reads the ``note:{id}`` snapshot; on a miss it reads the
  wrapped repository and populates the snapshot (best effort).
- Listings and search go straight to the wrapped repository.
- Every mutation runs against the wrapped repository first and, only when it
  succeeds, deletes the snapshot. Mutations never write snapshots; the next
  read refetches.
- Cache faults never reach the caller: a failed read is a miss, a failed
  populate or invalidate is reported to the error sink.
"""

from __future__ import annotations

import logging
from typing import Sequence

from app.adapters.cache.base import KeyCache
from app.adapters.cache.keys import note_key
from app.core.error_sink import ErrorSink, safe_report
from app.core.errors import CacheError
from app.repositories.base import NoteRepository
from app.schemas.note import Note

logger = logging.getLogger(__name__)


class CachedNoteRepository(NoteRepository):
    """NoteRepository that caches single-note reads.

    Attributes:
        base: The durable repository being wrapped.
        ttl_seconds: Lifetime of a cached snapshot.
    """

    def __init__(
        self,
        base: NoteRepository,
        cache: KeyCache,
        *,
        ttl_seconds: int = 300,
        error_sink: ErrorSink | None = None,
    ) -> None:
        self.base = base
        self.ttl_seconds = ttl_seconds
        self._cache = cache
        self._error_sink = error_sink

    def find_by_id(self, note_id: int) -> Note:
        key = note_key(note_id)

        try:
            cached, found = self._cache.get(key, Note)
        except CacheError as exc:
            safe_report(self._error_sink, "note_cache.read_failed", exc, note_id=note_id)
            return self.base.find_by_id(note_id)

        if found:
            logger.debug("note_cache.hit", extra={"note_id": note_id})
            return cached

        note = self.base.find_by_id(note_id)
        try:
            self._cache.set(key, note, self.ttl_seconds)
        except CacheError as exc:
            safe_report(self._error_sink, "note_cache.populate_failed", exc, note_id=note_id)
        return note

    def find_by_author(self, author_id: int, page: int, limit: int) -> tuple[list[Note], int]:
        return self.base.find_by_author(author_id, page, limit)

    def search(self, author_id: int, query: str, tags: Sequence[str] = ()) -> list[Note]:
        return self.base.search(author_id, query, tags)

    def create(self, note: Note) -> Note:
        created = self.base.create(note)
        self._invalidate(created.id)
        return created

    def update(self, note: Note) -> Note:
        updated = self.base.update(note)
        self._invalidate(note.id)
        return updated

    def delete(self, note_id: int) -> None:
        self.base.delete(note_id)
        self._invalidate(note_id)

    def add_tags(self, note_id: int, tags: Sequence[str]) -> None:
        self.base.add_tags(note_id, tags)
        self._invalidate(note_id)

    def remove_tags(self, note_id: int, tags: Sequence[str]) -> None:
        self.base.remove_tags(note_id, tags)
        self._invalidate(note_id)

    def apply_counter_deltas(self, note_id: int, *, views: int = 0, likes: int = 0) -> None:
        self.base.apply_counter_deltas(note_id, views=views, likes=likes)
        self._invalidate(note_id)

    def _invalidate(self, note_id: int) -> None:
        try:
            self._cache.delete(note_key(note_id))
        except CacheError as exc:
            safe_report(self._error_sink, "note_cache.invalidate_failed", exc, note_id=note_id)
