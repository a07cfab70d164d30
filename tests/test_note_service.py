"""Unit tests for NoteService counter handling and access rules."""

from unittest.mock import MagicMock

import pytest

from app.adapters.cache import InMemoryKeyCache
from app.adapters.cache.keys import note_likes_key, note_views_key
from app.core.error_sink import LoggingErrorSink, NullErrorSink, safe_report
from app.core.errors import AuthenticationAppError, CacheBackendError, ValidationAppError
from app.repositories import InMemoryNoteRepository
from app.schemas.note import NoteCreate, NoteUpdate
from app.services.note_service import NoteService

from conftest import RecordingErrorSink, make_note


def _down() -> CacheBackendError:
    return CacheBackendError(code="cache_backend_unavailable", message="down")


@pytest.fixture
def service(repo: InMemoryNoteRepository, cache: InMemoryKeyCache, sink: RecordingErrorSink) -> NoteService:
    return NoteService(repo, cache, error_sink=sink)


def test_get_note_adds_pending_deltas(service: NoteService, repo: InMemoryNoteRepository, cache: InMemoryKeyCache) -> None:
    note = repo.create(make_note())
    repo.apply_counter_deltas(note.id, views=100, likes=10)
    cache.increment(note_views_key(note.id), 5)
    cache.increment(note_likes_key(note.id), 2)

    served = service.get_note(7, note.id)

    assert (served.views, served.likes) == (106, 12)


def test_view_increment_failure_is_fail_soft(repo: InMemoryNoteRepository, sink: RecordingErrorSink) -> None:
    cache = MagicMock()
    cache.increment.side_effect = _down()
    cache.get.side_effect = _down()
    note = repo.create(make_note())
    service = NoteService(repo, cache, error_sink=sink)

    served = service.get_note(7, note.id)

    assert served.views == 0
    assert sink.events == ["note.view_increment_failed"]


def test_like_failure_is_fail_soft(repo: InMemoryNoteRepository, sink: RecordingErrorSink) -> None:
    cache = MagicMock()
    cache.increment.side_effect = _down()
    cache.get.side_effect = _down()
    note = repo.create(make_note())
    repo.apply_counter_deltas(note.id, likes=4)
    service = NoteService(repo, cache, error_sink=sink)

    liked = service.like_note(8, note.id)

    assert liked.likes == 4
    assert sink.events == ["note.like_increment_failed"]


def test_create_sets_author(service: NoteService) -> None:
    note = service.create_note(3, NoteCreate(title="t", content="c"))

    assert note.author_id == 3
    assert note.id > 0


def test_update_ignores_unset_and_null_fields(service: NoteService) -> None:
    note = service.create_note(3, NoteCreate(title="t", content="c", tags=["a"]))

    updated = service.update_note(3, note.id, NoteUpdate(title="t2", tags=None))

    assert updated.title == "t2"
    assert updated.content == "c"
    assert updated.tags == ["a"]


def test_only_owner_can_delete(service: NoteService) -> None:
    note = service.create_note(3, NoteCreate(title="t", content="c", is_public=True))

    with pytest.raises(AuthenticationAppError):
        service.delete_note(4, note.id)


def test_list_rejects_bad_pagination(service: NoteService) -> None:
    with pytest.raises(ValidationAppError):
        service.list_notes(3, page=0)


def test_safe_report_ignores_missing_and_broken_sinks() -> None:
    broken = MagicMock()
    broken.report.side_effect = RuntimeError("sink down")

    safe_report(None, "event", _down())
    safe_report(broken, "event", _down())
    safe_report(NullErrorSink(), "event", _down())


def test_logging_sink_emits_structured_warning(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level("WARNING", logger="app.core.error_sink"):
        LoggingErrorSink().report("counter_sync.apply_failed", _down(), note_id=9)

    record = caplog.records[-1]
    assert record.getMessage() == "counter_sync.apply_failed"
    assert record.note_id == 9
    assert record.error_type == "CacheBackendError"
