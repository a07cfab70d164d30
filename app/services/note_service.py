"""Note use-cases: ownership checks, counters and cache-aware reads.

Views and likes are never written to the durable store from a request. The
handler increments ``note:{id}:views|likes`` in the key cache and the
``CounterSyncWorker`` folds the deltas into the store later; reads add the
pending delta on top of the durable value.
"""

from __future__ import annotations

import logging
from typing import Sequence

from app.adapters.cache.base import KeyCache
from app.adapters.cache.keys import note_likes_key, note_views_key
from app.core.error_sink import ErrorSink, safe_report
from app.core.errors import AuthenticationAppError, CacheError, ValidationAppError
from app.repositories.base import NoteRepository
from app.schemas.note import LikeResponse, Note, NoteCreate, NoteList, NoteUpdate

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _forbidden(note_id: int) -> AuthenticationAppError:
    return AuthenticationAppError(
        code="forbidden",
        message="You do not have access to this note",
        details={"note_id": note_id},
    )


class NoteService:
    """Application service used by the notes routes.

    Args:
        notes: Repository (normally the cache-aside one).
        cache: Key cache holding pending counter deltas.
        error_sink: Receives counter faults absorbed on the read path.
    """

    def __init__(self, notes: NoteRepository, cache: KeyCache, *, error_sink: ErrorSink | None = None) -> None:
        self._notes = notes
        self._cache = cache
        self._error_sink = error_sink

    def list_notes(self, user_id: int, page: int = 1, limit: int = 20, author_id: int | None = None) -> NoteList:
        author = user_id if author_id is None else author_id
        if author != user_id:
            raise AuthenticationAppError(
                code="forbidden",
                message="You can only list your own notes",
                details={"context": {"author_id": author}},
            )
        if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationAppError(
                code="invalid_pagination",
                message=f"page must be >= 1 and limit between 1 and {MAX_PAGE_SIZE}",
            )

        items, total = self._notes.find_by_author(author, page, limit)
        return NoteList(items=items, total=total, page=page, limit=limit)

    def search_notes(self, user_id: int, query: str, tags: Sequence[str] = ()) -> list[Note]:
        return self._notes.search(user_id, query, tags)

    def create_note(self, user_id: int, payload: NoteCreate) -> Note:
        note = Note(author_id=user_id, **payload.model_dump())
        created = self._notes.create(note)
        logger.info("note.created", extra={"note_id": created.id, "author_id": user_id})
        return created

    def get_note(self, user_id: int, note_id: int) -> Note:
        """Return a visible note and count the view.

        The view increment is fail-soft: a cache fault is reported and the
        note is served anyway.

        Raises:
            NoteNotFoundError: The note does not exist.
            AuthenticationAppError: The note is private and not owned by ``user_id``.
        """

        note = self._visible_note(user_id, note_id)

        try:
            self._cache.increment(note_views_key(note_id))
        except CacheError as exc:
            safe_report(self._error_sink, "note.view_increment_failed", exc, note_id=note_id)

        return self._with_pending_counters(note)

    def like_note(self, user_id: int, note_id: int) -> LikeResponse:
        """Add one like and return the current count.

        Fail-soft like the view counter: when the cache rejects the
        increment the fault is reported and the count without this like is
        returned.

        Raises:
            NoteNotFoundError: The note does not exist.
            AuthenticationAppError: The note is not visible to ``user_id``.
        """

        note = self._visible_note(user_id, note_id)

        try:
            self._cache.increment(note_likes_key(note_id))
        except CacheError as exc:
            safe_report(self._error_sink, "note.like_increment_failed", exc, note_id=note_id)

        current = self._with_pending_counters(note)
        return LikeResponse(note_id=note_id, likes=current.likes)

    def update_note(self, user_id: int, note_id: int, payload: NoteUpdate) -> Note:
        note = self._owned_note(user_id, note_id)
        changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
        updated = self._notes.update(note.model_copy(update=changes))
        logger.info("note.updated", extra={"note_id": note_id, "fields": sorted(changes)})
        return updated

    def delete_note(self, user_id: int, note_id: int) -> None:
        self._owned_note(user_id, note_id)
        self._notes.delete(note_id)
        logger.info("note.deleted", extra={"note_id": note_id})

    def add_tags(self, user_id: int, note_id: int, tags: Sequence[str]) -> Note:
        self._owned_note(user_id, note_id)
        self._notes.add_tags(note_id, tags)
        return self._notes.find_by_id(note_id)

    def remove_tags(self, user_id: int, note_id: int, tags: Sequence[str]) -> Note:
        self._owned_note(user_id, note_id)
        self._notes.remove_tags(note_id, tags)
        return self._notes.find_by_id(note_id)

    def _visible_note(self, user_id: int, note_id: int) -> Note:
        note = self._notes.find_by_id(note_id)
        if not note.is_public and note.author_id != user_id:
            raise _forbidden(note_id)
        return note

    def _owned_note(self, user_id: int, note_id: int) -> Note:
        note = self._notes.find_by_id(note_id)
        if note.author_id != user_id:
            raise _forbidden(note_id)
        return note

    def _with_pending_counters(self, note: Note) -> Note:
        return note.model_copy(
            update={
                "views": note.views + self._pending(note_views_key(note.id)),
                "likes": note.likes + self._pending(note_likes_key(note.id)),
            }
        )

    def _pending(self, key: str) -> int:
        try:
            value, found = self._cache.get(key, int)
        except CacheError:
            logger.debug("note.pending_counter_unavailable", extra={"cache_key": key})
            return 0
        return value if found else 0
