"""In-memory note repository for development and tests."""

from __future__ import annotations

import itertools
import threading
from datetime import datetime, timezone
from typing import Iterable, Sequence

from app.core.errors import NoteNotFoundError, RepositoryError
from app.repositories.base import NoteRepository
from app.schemas.note import Note


class InMemoryNoteRepository(NoteRepository):
    """Dict-backed repository guarded by a lock.

    Args:
        fail_counter_ids: Note ids whose counter transactions fail with
            ``RepositoryError``. Lets tests exercise the sync rollback path.
    """

    def __init__(self, *, fail_counter_ids: Iterable[int] = ()) -> None:
        self._notes: dict[int, Note] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()
        self.fail_counter_ids: set[int] = set(fail_counter_ids)

    def create(self, note: Note) -> Note:
        with self._lock:
            now = datetime.now(timezone.utc)
            stored = note.model_copy(
                update={"id": next(self._ids), "created_at": now, "updated_at": now}
            )
            self._notes[stored.id] = stored
            return stored.model_copy(deep=True)

    def find_by_id(self, note_id: int) -> Note:
        with self._lock:
            return self._get_locked(note_id).model_copy(deep=True)

    def find_by_author(self, author_id: int, page: int, limit: int) -> tuple[list[Note], int]:
        with self._lock:
            owned = sorted(
                (n for n in self._notes.values() if n.author_id == author_id),
                key=lambda n: (n.created_at, n.id),
                reverse=True,
            )
        start = max(page - 1, 0) * limit
        return [n.model_copy(deep=True) for n in owned[start:start + limit]], len(owned)

    def search(self, author_id: int, query: str, tags: Sequence[str] = ()) -> list[Note]:
        needle = query.lower()
        wanted = set(tags)
        with self._lock:
            return [
                n.model_copy(deep=True)
                for n in self._notes.values()
                if n.author_id == author_id
                and (needle in n.title.lower() or needle in n.content.lower())
                and wanted.issubset(n.tags)
            ]

    def update(self, note: Note) -> Note:
        with self._lock:
            current = self._get_locked(note.id)
            stored = note.model_copy(
                update={
                    "views": current.views,
                    "likes": current.likes,
                    "created_at": current.created_at,
                    "updated_at": datetime.now(timezone.utc),
                }
            )
            self._notes[note.id] = stored
            return stored.model_copy(deep=True)

    def delete(self, note_id: int) -> None:
        with self._lock:
            self._get_locked(note_id)
            del self._notes[note_id]

    def add_tags(self, note_id: int, tags: Sequence[str]) -> None:
        with self._lock:
            note = self._get_locked(note_id)
            merged = list(note.tags) + [t for t in tags if t not in note.tags]
            self._notes[note_id] = note.model_copy(update={"tags": merged})

    def remove_tags(self, note_id: int, tags: Sequence[str]) -> None:
        with self._lock:
            note = self._get_locked(note_id)
            kept = [t for t in note.tags if t not in set(tags)]
            self._notes[note_id] = note.model_copy(update={"tags": kept})

    def apply_counter_deltas(self, note_id: int, *, views: int = 0, likes: int = 0) -> None:
        with self._lock:
            if note_id in self.fail_counter_ids:
                raise RepositoryError(
                    code="counter_update_failed",
                    message=f"Counter transaction failed for note {note_id}",
                    details={"note_id": note_id},
                )
            note = self._get_locked(note_id)
            self._notes[note_id] = note.model_copy(
                update={"views": note.views + views, "likes": note.likes + likes}
            )

    def _get_locked(self, note_id: int) -> Note:
        note = self._notes.get(note_id)
        if note is None:
            raise NoteNotFoundError.for_id(note_id)
        return note
