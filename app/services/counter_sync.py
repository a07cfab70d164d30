"""Write-behind synchronization of view/like counters.

Request handlers only ``increment`` ``note:{id}:views|likes`` in the key
cache, which also puts the id in the dirty set. This worker periodically:

1. pops the whole dirty set (atomically);
2. for each id, ``get_and_clear``s both counters;
3. applies the non-zero deltas to the durable store in one transaction per
   id, as relative increments;
4. on a failed transaction, adds the exact deltas back to the cache so a
   later cycle retries them.

Known gaps (accepted):
- between ``get_and_clear`` and the commit a delta lives in neither store, so
  a process crash in that window loses it;
- deltas still waiting in the cache are lost if the cache itself loses data;
- a dirty mark racing a pop can delay one increment by a cycle.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Sequence

from app.adapters.cache.base import KeyCache
from app.adapters.cache.keys import note_likes_key, note_views_key
from app.core.error_sink import ErrorSink, safe_report
from app.core.errors import CacheError, NoteNotFoundError
from app.repositories.base import CounterStore

logger = logging.getLogger(__name__)


class CounterSyncState(str, Enum):
    IDLE = "idle"
    DRAINING = "draining"
    RECONCILING = "reconciling"
    STOPPED = "stopped"


@dataclass
class SyncReport:
    """Outcome of one sync cycle.

    Attributes:
        popped: Ids taken from the dirty set.
        applied: Ids whose deltas were committed.
        skipped: Ids with nothing to persist (both deltas 0).
        failed: Ids whose transaction failed (deltas restored to the cache).
        restored: Deltas put back into the cache after a failure.
        requeued: Ids re-marked dirty without being applied (read fault or stop).
        dropped: Ids whose note no longer exists (deltas discarded).
        restore_failures: Deltas that could not be put back (lost).
        views_applied: Sum of committed view deltas.
        likes_applied: Sum of committed like deltas.
        skipped_overlap: The cycle did not run because another was active.
    """

    popped: int = 0
    applied: int = 0
    skipped: int = 0
    failed: int = 0
    restored: int = 0
    requeued: int = 0
    dropped: int = 0
    restore_failures: int = 0
    views_applied: int = 0
    likes_applied: int = 0
    skipped_overlap: bool = False


class CounterSyncWorker:
    """Background worker reconciling cached counter deltas into the store.

    One cycle runs at a time: the periodic thread is the only scheduler, and
    a lock makes a concurrent ``run_once`` call return immediately instead of
    popping the dirty set a second time.

    Args:
        cache: Key cache holding the deltas and the dirty set.
        store: Durable counter store.
        interval_seconds: Delay between cycles.
        error_sink: Receives absorbed faults.
    """

    def __init__(
        self,
        cache: KeyCache,
        store: CounterStore,
        *,
        interval_seconds: float = 10.0,
        error_sink: ErrorSink | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")

        self._cache = cache
        self._store = store
        self._interval = interval_seconds
        self._error_sink = error_sink
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._state = CounterSyncState.IDLE

    @property
    def state(self) -> CounterSyncState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the periodic thread (no-op if already running)."""

        if self.is_running:
            return
        self._stop_event.clear()
        self._state = CounterSyncState.IDLE
        self._thread = threading.Thread(target=self._loop, name="counter-sync", daemon=True)
        self._thread.start()
        logger.info("counter_sync.started", extra={"interval_s": self._interval})

    def stop(self, timeout: float | None = None, *, flush: bool = False) -> None:
        """Signal the thread to stop and wait for it.

        A cycle in progress finishes the id it is working on, re-marks the
        remaining ids dirty and exits; no new cycle starts afterwards.

        Args:
            timeout: Max seconds to wait for the thread (None waits forever).
            flush: Run one last full cycle after the thread has exited, e.g.
                at shutdown with a process-local cache.
        """

        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("counter_sync.stop_timeout", extra={"timeout_s": timeout})
                return
            self._thread = None

        if flush:
            self._run_cycle(honor_stop=False)

        self._state = CounterSyncState.STOPPED
        logger.info("counter_sync.stopped")

    def run_once(self) -> SyncReport:
        """Run a single cycle now (used by the loop, tests and admin tooling)."""

        return self._run_cycle(honor_stop=True)

    def _loop(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self.run_once()
            except Exception as exc:  # keep the worker alive across unexpected faults
                safe_report(self._error_sink, "counter_sync.cycle_crashed", exc)

    def _run_cycle(self, *, honor_stop: bool) -> SyncReport:
        if not self._cycle_lock.acquire(blocking=False):
            logger.info("counter_sync.cycle_overlap_skipped")
            return SyncReport(skipped_overlap=True)

        report = SyncReport()
        try:
            self._state = CounterSyncState.DRAINING
            try:
                note_ids = self._cache.pop_dirty_ids()
            except CacheError as exc:
                safe_report(self._error_sink, "counter_sync.pop_failed", exc)
                return report

            report.popped = len(note_ids)
            if not note_ids:
                return report

            self._state = CounterSyncState.RECONCILING
            pending = sorted(note_ids)
            for index, note_id in enumerate(pending):
                if honor_stop and self._stop_event.is_set():
                    self._requeue(pending[index:], report)
                    break
                self._reconcile(note_id, report)

            logger.info("counter_sync.cycle_done", extra=asdict(report))
            return report
        finally:
            if self._state is not CounterSyncState.STOPPED:
                self._state = CounterSyncState.IDLE
            self._cycle_lock.release()

    def _reconcile(self, note_id: int, report: SyncReport) -> None:
        views_key = note_views_key(note_id)
        likes_key = note_likes_key(note_id)

        try:
            views = self._cache.get_and_clear(views_key)
        except CacheError as exc:
            safe_report(self._error_sink, "counter_sync.read_failed", exc, note_id=note_id, counter="views")
            self._remark(note_id, report)
            return

        try:
            likes = self._cache.get_and_clear(likes_key)
        except CacheError as exc:
            safe_report(self._error_sink, "counter_sync.read_failed", exc, note_id=note_id, counter="likes")
            self._restore(note_id, views_key, views, report)
            self._remark(note_id, report)
            return

        if views == 0 and likes == 0:
            report.skipped += 1
            return

        try:
            self._store.apply_counter_deltas(note_id, views=views, likes=likes)
        except NoteNotFoundError:
            logger.info(
                "counter_sync.note_missing",
                extra={"note_id": note_id, "views": views, "likes": likes},
            )
            report.dropped += 1
            return
        except Exception as exc:  # any store failure: put the deltas back and move on
            safe_report(
                self._error_sink,
                "counter_sync.apply_failed",
                exc,
                note_id=note_id,
                views=views,
                likes=likes,
            )
            report.failed += 1
            self._restore(note_id, views_key, views, report)
            self._restore(note_id, likes_key, likes, report)
            return

        report.applied += 1
        report.views_applied += views
        report.likes_applied += likes

    def _restore(self, note_id: int, key: str, delta: int, report: SyncReport) -> None:
        if delta == 0:
            return
        try:
            self._cache.increment(key, delta)
        except CacheError as exc:
            report.restore_failures += 1
            logger.error(
                "counter_sync.delta_lost",
                extra={"note_id": note_id, "cache_key": key, "delta": delta},
            )
            safe_report(self._error_sink, "counter_sync.restore_failed", exc, note_id=note_id, delta=delta)
        else:
            report.restored += 1

    def _remark(self, note_id: int, report: SyncReport) -> None:
        # Incrementing by zero recreates the dirty mark without touching the count
        try:
            self._cache.increment(note_views_key(note_id), 0)
        except CacheError as exc:
            safe_report(self._error_sink, "counter_sync.remark_failed", exc, note_id=note_id)
        report.requeued += 1

    def _requeue(self, note_ids: Sequence[int], report: SyncReport) -> None:
        logger.info("counter_sync.stop_requeue", extra={"remaining": len(note_ids)})
        for note_id in note_ids:
            self._remark(note_id, report)
