"""Durable note store contracts, implementations and the cache-aside wrapper."""

from app.repositories.base import CounterStore, NoteRepository
from app.repositories.cached import CachedNoteRepository
from app.repositories.in_memory import InMemoryNoteRepository
from app.repositories.sqlalchemy_repo import SqlAlchemyNoteRepository

__all__ = [
    "CachedNoteRepository",
    "CounterStore",
    "InMemoryNoteRepository",
    "NoteRepository",
    "SqlAlchemyNoteRepository",
]
