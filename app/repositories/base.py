"""Durable note store contracts.

``NoteRepository`` is what services and the cache-aside wrapper consume;
``CounterStore`` is the narrow capability the counter sync worker needs.
Implementations raise ``NoteNotFoundError`` for unknown ids and
``RepositoryError`` for backend failures.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from app.schemas.note import Note


class CounterStore(ABC):
    """Durable counters updated with relative increments."""

    @abstractmethod
    def apply_counter_deltas(self, note_id: int, *, views: int = 0, likes: int = 0) -> None:
        """Add ``views``/``likes`` to the stored counters in one transaction.

        Updates are relative (``col = col + delta``) so concurrent writers are
        never overwritten. The transaction covers this note id only.

        Raises:
            NoteNotFoundError: The note does not exist.
            RepositoryError: The transaction failed and was rolled back.
        """
        raise NotImplementedError


class NoteRepository(CounterStore):
    """CRUD, listing and tag association for notes."""

    @abstractmethod
    def create(self, note: Note) -> Note:
        """Persist a new note and return it with its assigned id."""
        raise NotImplementedError

    @abstractmethod
    def find_by_id(self, note_id: int) -> Note:
        raise NotImplementedError

    @abstractmethod
    def find_by_author(self, author_id: int, page: int, limit: int) -> tuple[list[Note], int]:
        """Return one page of an author's notes (newest first) and the total count."""
        raise NotImplementedError

    @abstractmethod
    def search(self, author_id: int, query: str, tags: Sequence[str] = ()) -> list[Note]:
        """Case-insensitive title/content search, optionally requiring all ``tags``."""
        raise NotImplementedError

    @abstractmethod
    def update(self, note: Note) -> Note:
        """Overwrite the editable fields of an existing note.

        Counters are not part of an update; they only move through
        ``apply_counter_deltas``.
        """
        raise NotImplementedError

    @abstractmethod
    def delete(self, note_id: int) -> None:
        raise NotImplementedError

    @abstractmethod
    def add_tags(self, note_id: int, tags: Sequence[str]) -> None:
        raise NotImplementedError

    @abstractmethod
    def remove_tags(self, note_id: int, tags: Sequence[str]) -> None:
        raise NotImplementedError
