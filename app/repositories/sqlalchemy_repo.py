"""SQLAlchemy implementation of the durable note store.

Works against Postgres in deployment and SQLite locally/in tests. Counter
reconciliation issues a single relative ``UPDATE notes SET views = views + :d``
per note inside its own transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Integer,
    String,
    Text,
    create_engine,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.errors import NoteNotFoundError, RepositoryError
from app.repositories.base import NoteRepository
from app.schemas.note import Note

logger = logging.getLogger(__name__)

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NoteRow(Base):
    __tablename__ = "notes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    summary = Column(Text, nullable=False, default="")
    content = Column(Text, nullable=False)
    cover_image = Column(String(500), nullable=False, default="")
    author_id = Column(Integer, nullable=False, index=True)
    tags = Column(JSON, nullable=False, default=list)
    is_public = Column(Boolean, nullable=False, default=False, index=True)
    views = Column(BigInteger, nullable=False, default=0)
    likes = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


_EDITABLE_FIELDS = ("title", "summary", "content", "cover_image", "author_id", "tags", "is_public")


def _engine_kwargs(database_url: str, echo: bool) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"echo": echo, "future": True}
    if database_url.startswith("sqlite"):
        # Request threads and the sync worker share the engine
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url:
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True
    return kwargs


class SqlAlchemyNoteRepository(NoteRepository):
    """Note repository backed by a SQLAlchemy engine.

    Args:
        database_url: SQLAlchemy URL (``postgresql+psycopg://...``,
            ``sqlite+pysqlite:///:memory:``).
        echo: Log emitted SQL.
        create_schema: Create the ``notes`` table when missing.
    """

    def __init__(self, database_url: str, *, echo: bool = False, create_schema: bool = True) -> None:
        self.engine = create_engine(database_url, **_engine_kwargs(database_url, echo))
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        if create_schema:
            Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    def _wrap(self, operation: str, exc: SQLAlchemyError, note_id: int | None = None) -> RepositoryError:
        logger.error(
            "repository.error",
            extra={"operation": operation, "note_id": note_id, "error_type": type(exc).__name__},
        )
        return RepositoryError(
            code="repository_error",
            message=f"Note store {operation} failed",
            details={"operation": operation, "hint": type(exc).__name__},
        )

    @staticmethod
    def _to_note(row: NoteRow) -> Note:
        return Note.model_validate(row, from_attributes=True)

    @staticmethod
    def _get_row(session: Session, note_id: int) -> NoteRow:
        row = session.get(NoteRow, note_id)
        if row is None:
            raise NoteNotFoundError.for_id(note_id)
        return row

    def create(self, note: Note) -> Note:
        try:
            with self.Session.begin() as session:
                row = NoteRow(**{field: getattr(note, field) for field in _EDITABLE_FIELDS})
                row.tags = list(note.tags)
                session.add(row)
                session.flush()
                return self._to_note(row)
        except SQLAlchemyError as exc:
            raise self._wrap("create", exc) from exc

    def find_by_id(self, note_id: int) -> Note:
        try:
            with self.Session() as session:
                return self._to_note(self._get_row(session, note_id))
        except SQLAlchemyError as exc:
            raise self._wrap("find_by_id", exc, note_id) from exc

    def find_by_author(self, author_id: int, page: int, limit: int) -> tuple[list[Note], int]:
        offset = max(page - 1, 0) * limit
        try:
            with self.Session() as session:
                total = session.execute(
                    select(func.count()).select_from(NoteRow).where(NoteRow.author_id == author_id)
                ).scalar_one()
                rows = session.execute(
                    select(NoteRow)
                    .where(NoteRow.author_id == author_id)
                    .order_by(NoteRow.created_at.desc(), NoteRow.id.desc())
                    .offset(offset)
                    .limit(limit)
                ).scalars().all()
                return [self._to_note(row) for row in rows], int(total)
        except SQLAlchemyError as exc:
            raise self._wrap("find_by_author", exc) from exc

    def search(self, author_id: int, query: str, tags: Sequence[str] = ()) -> list[Note]:
        pattern = f"%{query}%"
        try:
            with self.Session() as session:
                rows = session.execute(
                    select(NoteRow)
                    .where(NoteRow.author_id == author_id)
                    .where(or_(NoteRow.title.ilike(pattern), NoteRow.content.ilike(pattern)))
                    .order_by(NoteRow.id)
                ).scalars().all()
        except SQLAlchemyError as exc:
            raise self._wrap("search", exc) from exc

        wanted = set(tags)
        return [self._to_note(row) for row in rows if wanted.issubset(row.tags or [])]

    def update(self, note: Note) -> Note:
        try:
            with self.Session.begin() as session:
                row = self._get_row(session, note.id)
                for field in _EDITABLE_FIELDS:
                    setattr(row, field, getattr(note, field))
                row.tags = list(note.tags)
                row.updated_at = _utcnow()
                session.flush()
                return self._to_note(row)
        except SQLAlchemyError as exc:
            raise self._wrap("update", exc, note.id) from exc

    def delete(self, note_id: int) -> None:
        try:
            with self.Session.begin() as session:
                session.delete(self._get_row(session, note_id))
        except SQLAlchemyError as exc:
            raise self._wrap("delete", exc, note_id) from exc

    def add_tags(self, note_id: int, tags: Sequence[str]) -> None:
        try:
            with self.Session.begin() as session:
                row = self._get_row(session, note_id)
                current = list(row.tags or [])
                row.tags = current + [t for t in tags if t not in current]
        except SQLAlchemyError as exc:
            raise self._wrap("add_tags", exc, note_id) from exc

    def remove_tags(self, note_id: int, tags: Sequence[str]) -> None:
        dropped = set(tags)
        try:
            with self.Session.begin() as session:
                row = self._get_row(session, note_id)
                row.tags = [t for t in (row.tags or []) if t not in dropped]
        except SQLAlchemyError as exc:
            raise self._wrap("remove_tags", exc, note_id) from exc

    def apply_counter_deltas(self, note_id: int, *, views: int = 0, likes: int = 0) -> None:
        values: dict[str, Any] = {}
        if views:
            values["views"] = NoteRow.views + views
        if likes:
            values["likes"] = NoteRow.likes + likes
        if not values:
            return

        try:
            with self.Session.begin() as session:
                result = session.execute(
                    update(NoteRow)
                    .where(NoteRow.id == note_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise NoteNotFoundError.for_id(note_id)
        except SQLAlchemyError as exc:
            raise self._wrap("apply_counter_deltas", exc, note_id) from exc
