"""Tests for the SQLAlchemy note repository on in-memory SQLite."""

from typing import Iterator

import pytest
from sqlalchemy.exc import OperationalError

from app.core.errors import NoteNotFoundError, RepositoryError
from app.repositories import SqlAlchemyNoteRepository

from conftest import make_note


@pytest.fixture
def store() -> Iterator[SqlAlchemyNoteRepository]:
    repository = SqlAlchemyNoteRepository("sqlite+pysqlite:///:memory:")
    yield repository
    repository.dispose()


def test_create_assigns_id_and_round_trips(store: SqlAlchemyNoteRepository) -> None:
    created = store.create(make_note(tags=["redis", "cache"]))

    assert created.id > 0
    fetched = store.find_by_id(created.id)
    assert fetched.title == "Cache design"
    assert fetched.tags == ["redis", "cache"]
    assert (fetched.views, fetched.likes) == (0, 0)


def test_find_missing_raises_not_found(store: SqlAlchemyNoteRepository) -> None:
    with pytest.raises(NoteNotFoundError) as exc_info:
        store.find_by_id(123)

    assert exc_info.value.code == "note_not_found"


def test_counter_deltas_are_relative(store: SqlAlchemyNoteRepository) -> None:
    note_id = store.create(make_note()).id

    store.apply_counter_deltas(note_id, views=100, likes=10)
    store.apply_counter_deltas(note_id, views=5, likes=2)

    note = store.find_by_id(note_id)
    assert (note.views, note.likes) == (105, 12)


def test_counter_deltas_on_missing_note(store: SqlAlchemyNoteRepository) -> None:
    with pytest.raises(NoteNotFoundError):
        store.apply_counter_deltas(999, views=1)


def test_zero_deltas_do_not_touch_the_row(store: SqlAlchemyNoteRepository) -> None:
    store.apply_counter_deltas(999)


def test_update_preserves_counters(store: SqlAlchemyNoteRepository) -> None:
    created = store.create(make_note())
    store.apply_counter_deltas(created.id, views=7)

    updated = store.update(created.model_copy(update={"title": "Renamed", "views": 0}))

    assert updated.title == "Renamed"
    assert updated.views == 7


def test_delete_removes_note(store: SqlAlchemyNoteRepository) -> None:
    note_id = store.create(make_note()).id

    store.delete(note_id)

    with pytest.raises(NoteNotFoundError):
        store.find_by_id(note_id)
    with pytest.raises(NoteNotFoundError):
        store.delete(note_id)


def test_find_by_author_paginates(store: SqlAlchemyNoteRepository) -> None:
    ids = [store.create(make_note(title=f"n{i}")).id for i in range(5)]
    store.create(make_note(author_id=8))

    page1, total = store.find_by_author(7, page=1, limit=2)
    page3, _ = store.find_by_author(7, page=3, limit=2)

    assert total == 5
    assert len(page1) == 2
    assert [n.id for n in page3] == [ids[0]]


def test_tags_add_and_remove(store: SqlAlchemyNoteRepository) -> None:
    note_id = store.create(make_note(tags=["redis"])).id

    store.add_tags(note_id, ["sql", "redis"])
    assert store.find_by_id(note_id).tags == ["redis", "sql"]

    store.remove_tags(note_id, ["redis"])
    assert store.find_by_id(note_id).tags == ["sql"]


def test_search_matches_text_and_tags(store: SqlAlchemyNoteRepository) -> None:
    store.create(make_note(title="Redis pipelines", tags=["redis"]))
    store.create(make_note(title="Postgres vacuum", tags=["sql"]))

    assert [n.title for n in store.search(7, "redis")] == ["Redis pipelines"]
    assert store.search(7, "redis", tags=["sql"]) == []


def test_driver_errors_are_wrapped(store: SqlAlchemyNoteRepository) -> None:
    with store.engine.begin() as conn:
        conn.exec_driver_sql("DROP TABLE notes")

    with pytest.raises(RepositoryError) as exc_info:
        store.find_by_id(1)

    assert not isinstance(exc_info.value, NoteNotFoundError)
    assert isinstance(exc_info.value.__cause__, OperationalError)
