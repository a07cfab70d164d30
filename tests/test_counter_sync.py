"""Tests for the write-behind counter sync worker."""

import threading
import time
from unittest.mock import MagicMock

import pytest

from app.adapters.cache import InMemoryKeyCache, NoOpKeyCache
from app.adapters.cache.keys import note_likes_key, note_views_key
from app.core.errors import CacheBackendError
from app.repositories import InMemoryNoteRepository
from app.services.counter_sync import CounterSyncState, CounterSyncWorker

from conftest import RecordingErrorSink, make_note


def _seed(repo: InMemoryNoteRepository, views: int = 0, likes: int = 0) -> int:
    note = repo.create(make_note())
    if views or likes:
        repo.apply_counter_deltas(note.id, views=views, likes=likes)
    return note.id


def _counters(repo: InMemoryNoteRepository, note_id: int) -> tuple[int, int]:
    note = repo.find_by_id(note_id)
    return note.views, note.likes


def test_deltas_are_folded_into_the_store(cache: InMemoryKeyCache, repo: InMemoryNoteRepository) -> None:
    note_id = _seed(repo, views=100, likes=10)
    cache.increment(note_views_key(note_id), 5)
    cache.increment(note_likes_key(note_id), 2)
    worker = CounterSyncWorker(cache, repo)

    report = worker.run_once()

    assert _counters(repo, note_id) == (105, 12)
    assert cache.get(note_views_key(note_id), int) == (None, False)
    assert cache.get(note_likes_key(note_id), int) == (None, False)
    assert cache.pop_dirty_ids() == set()
    assert (report.popped, report.applied, report.views_applied, report.likes_applied) == (1, 1, 5, 2)


def test_second_cycle_without_new_increments_is_a_no_op(cache: InMemoryKeyCache, repo: InMemoryNoteRepository) -> None:
    note_id = _seed(repo)
    cache.increment(note_views_key(note_id), 3)
    worker = CounterSyncWorker(cache, repo)

    worker.run_once()
    report = worker.run_once()

    assert report.popped == 0
    assert _counters(repo, note_id) == (3, 0)


def test_zero_deltas_are_skipped(cache: InMemoryKeyCache, repo: InMemoryNoteRepository) -> None:
    note_id = _seed(repo)
    cache.increment(note_views_key(note_id), 0)
    store = MagicMock(wraps=repo)
    worker = CounterSyncWorker(cache, store)

    report = worker.run_once()

    assert report.skipped == 1
    store.apply_counter_deltas.assert_not_called()


def test_failed_transaction_restores_exact_deltas(cache: InMemoryKeyCache, repo: InMemoryNoteRepository, sink: RecordingErrorSink) -> None:
    ok_id = _seed(repo)
    bad_id = _seed(repo)
    repo.fail_counter_ids.add(bad_id)
    for note_id in (ok_id, bad_id):
        cache.increment(note_views_key(note_id), 4)
        cache.increment(note_likes_key(note_id), 1)
    worker = CounterSyncWorker(cache, repo, error_sink=sink)

    report = worker.run_once()

    assert (report.applied, report.failed) == (1, 1)
    assert report.restored == 2
    assert _counters(repo, ok_id) == (4, 1)
    assert _counters(repo, bad_id) == (0, 0)
    assert cache.get(note_views_key(bad_id), int) == (4, True)
    assert cache.get(note_likes_key(bad_id), int) == (1, True)
    assert sink.events == ["counter_sync.apply_failed"]

    repo.fail_counter_ids.clear()
    worker.run_once()

    assert _counters(repo, bad_id) == (4, 1)


def test_increments_during_failure_are_conserved(cache: InMemoryKeyCache, repo: InMemoryNoteRepository) -> None:
    note_id = _seed(repo)
    repo.fail_counter_ids.add(note_id)
    worker = CounterSyncWorker(cache, repo)
    total = 0
    for burst in (3, 5, 2):
        cache.increment(note_views_key(note_id), burst)
        total += burst
        worker.run_once()

    repo.fail_counter_ids.clear()
    worker.run_once()

    assert _counters(repo, note_id) == (total, 0)


def test_read_failure_remarks_id_and_keeps_taken_views(repo: InMemoryNoteRepository, sink: RecordingErrorSink) -> None:
    cache = MagicMock()
    cache.pop_dirty_ids.return_value = {7}
    cache.get_and_clear.side_effect = [4, CacheBackendError(code="cache_backend_unavailable", message="down")]
    store = MagicMock()
    worker = CounterSyncWorker(cache, store, error_sink=sink)

    report = worker.run_once()

    store.apply_counter_deltas.assert_not_called()
    assert cache.increment.call_args_list[0].args == (note_views_key(7), 4)
    assert cache.increment.call_args_list[-1].args == (note_views_key(7), 0)
    assert report.requeued == 1
    assert sink.events == ["counter_sync.read_failed"]


def test_pop_failure_ends_cycle_quietly(sink: RecordingErrorSink) -> None:
    cache = MagicMock()
    cache.pop_dirty_ids.side_effect = CacheBackendError(code="cache_backend_unavailable", message="down")
    worker = CounterSyncWorker(cache, MagicMock(), error_sink=sink)

    report = worker.run_once()

    assert report.popped == 0
    assert sink.events == ["counter_sync.pop_failed"]
    assert worker.state is CounterSyncState.IDLE


def test_missing_note_drops_deltas(cache: InMemoryKeyCache, repo: InMemoryNoteRepository) -> None:
    cache.increment(note_views_key(404), 2)
    worker = CounterSyncWorker(cache, repo)

    report = worker.run_once()

    assert report.dropped == 1
    assert cache.pop_dirty_ids() == set()


def test_restore_failure_is_counted(repo: InMemoryNoteRepository, sink: RecordingErrorSink) -> None:
    cache = MagicMock()
    cache.pop_dirty_ids.return_value = {1}
    cache.get_and_clear.side_effect = [3, 0]
    cache.increment.side_effect = CacheBackendError(code="cache_backend_unavailable", message="down")
    store = MagicMock()
    store.apply_counter_deltas.side_effect = RuntimeError("db down")
    worker = CounterSyncWorker(cache, store, error_sink=sink)

    report = worker.run_once()

    assert report.failed == 1
    assert report.restore_failures == 1
    assert sink.events == ["counter_sync.apply_failed", "counter_sync.restore_failed"]


def test_overlapping_cycle_is_skipped(cache: InMemoryKeyCache) -> None:
    entered = threading.Event()
    release = threading.Event()
    store = MagicMock()

    def slow_apply(note_id: int, *, views: int = 0, likes: int = 0) -> None:
        entered.set()
        release.wait(5)

    store.apply_counter_deltas.side_effect = slow_apply
    cache.increment(note_views_key(1))
    worker = CounterSyncWorker(cache, store)

    background = threading.Thread(target=worker.run_once)
    background.start()
    assert entered.wait(5)

    assert worker.state is CounterSyncState.RECONCILING
    assert worker.run_once().skipped_overlap is True

    release.set()
    background.join(5)
    assert worker.state is CounterSyncState.IDLE


def test_stop_mid_cycle_requeues_remaining_ids(cache: InMemoryKeyCache, repo: InMemoryNoteRepository) -> None:
    ids = [_seed(repo) for _ in range(3)]
    for note_id in ids:
        cache.increment(note_views_key(note_id), 1)
    store = MagicMock(wraps=repo)
    worker = CounterSyncWorker(cache, store)

    def apply_then_stop(note_id: int, *, views: int = 0, likes: int = 0) -> None:
        repo.apply_counter_deltas(note_id, views=views, likes=likes)
        worker.stop()

    store.apply_counter_deltas.side_effect = apply_then_stop

    report = worker.run_once()

    assert report.applied == 1
    assert report.requeued == 2
    assert worker.state is CounterSyncState.STOPPED
    assert cache.pop_dirty_ids() == set(ids[1:])
    assert [_counters(repo, i)[0] for i in ids] == [1, 0, 0]
    assert [cache.get(note_views_key(i), int)[0] for i in ids[1:]] == [1, 1]


def test_concurrent_increments_and_cycles_conserve_deltas(cache: InMemoryKeyCache, repo: InMemoryNoteRepository) -> None:
    note_id = _seed(repo)
    worker = CounterSyncWorker(cache, repo)
    per_thread = 2000
    done = threading.Event()

    def bump() -> None:
        for _ in range(per_thread):
            cache.increment(note_views_key(note_id))

    def sync_loop() -> None:
        while not done.is_set():
            worker.run_once()

    syncer = threading.Thread(target=sync_loop)
    syncer.start()
    writers = [threading.Thread(target=bump) for _ in range(4)]
    for thread in writers:
        thread.start()
    for thread in writers:
        thread.join()
    done.set()
    syncer.join(5)

    durable, _ = _counters(repo, note_id)
    pending, _ = cache.get(note_views_key(note_id), int)
    assert durable + (pending or 0) == 4 * per_thread

    worker.run_once()
    assert _counters(repo, note_id) == (4 * per_thread, 0)


def test_start_and_stop_run_periodic_cycles(cache: InMemoryKeyCache, repo: InMemoryNoteRepository) -> None:
    note_id = _seed(repo)
    cache.increment(note_views_key(note_id), 2)
    worker = CounterSyncWorker(cache, repo, interval_seconds=0.01)

    worker.start()
    deadline = time.monotonic() + 5
    while _counters(repo, note_id) != (2, 0) and time.monotonic() < deadline:
        time.sleep(0.01)
    worker.stop(timeout=5)

    assert _counters(repo, note_id) == (2, 0)
    assert worker.is_running is False
    assert worker.state is CounterSyncState.STOPPED


def test_stop_with_flush_applies_pending_deltas(cache: InMemoryKeyCache, repo: InMemoryNoteRepository) -> None:
    note_id = _seed(repo)
    worker = CounterSyncWorker(cache, repo, interval_seconds=60)
    worker.start()
    cache.increment(note_likes_key(note_id), 3)

    worker.stop(timeout=5, flush=True)

    assert _counters(repo, note_id) == (0, 3)


def test_noop_cache_cycles_do_nothing(repo: InMemoryNoteRepository) -> None:
    worker = CounterSyncWorker(NoOpKeyCache(), repo)

    assert worker.run_once().popped == 0


def test_rejects_non_positive_interval(cache: InMemoryKeyCache, repo: InMemoryNoteRepository) -> None:
    with pytest.raises(ValueError):
        CounterSyncWorker(cache, repo, interval_seconds=0)


def test_three_views_on_note_42_reach_the_store_in_one_transaction(cache: InMemoryKeyCache) -> None:
    store = MagicMock()
    for _ in range(3):
        cache.increment(note_views_key(42))
    worker = CounterSyncWorker(cache, store)

    report = worker.run_once()

    store.apply_counter_deltas.assert_called_once_with(42, views=3, likes=0)
    assert report.views_applied == 3
    assert cache.pop_dirty_ids() == set()
    assert worker.run_once().popped == 0
