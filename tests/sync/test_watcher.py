"""
Unit tests for doc_sync.sync.watcher
"""

from __future__ import annotations

import os
import threading
import time
from unittest.mock import MagicMock

from watchdog.events import (
    DirModifiedEvent, FileCreatedEvent, FileDeletedEvent, FileModifiedEvent, FileMovedEvent,
)

from doc_sync.sync.watcher import SyncEventHandler, SyncTrigger


def _wait_idle(trigger: SyncTrigger, timeout: float = 5.0) -> None:
    deadline = time.time() + timeout
    while trigger.busy and time.time() < deadline:
        time.sleep(0.01)


# ---------------------------------------------------------------------------
# SyncTrigger
# ---------------------------------------------------------------------------

class TestSyncTrigger:

    def test_burst_debounced_into_one_run(self):
        fn = MagicMock()
        trigger = SyncTrigger(fn, debounce_seconds=0.1)
        for _ in range(5):
            trigger.notify()
        _wait_idle(trigger)
        assert fn.call_count == 1
        assert trigger.runs == 1

    def test_events_during_run_coalesce_into_one_follow_up(self):
        started = threading.Event()
        release = threading.Event()
        calls = []

        def slow_sync():
            calls.append(time.time())
            started.set()
            release.wait(timeout=5)

        trigger = SyncTrigger(slow_sync, debounce_seconds=0.01)
        trigger.notify()
        assert started.wait(timeout=5)

        trigger.notify()
        trigger.notify()
        trigger.notify()
        release.set()
        _wait_idle(trigger)
        assert len(calls) == 2

    def test_failing_sync_does_not_wedge_trigger(self):
        fn = MagicMock(side_effect=[RuntimeError("boom"), None])
        trigger = SyncTrigger(fn, debounce_seconds=0.01)
        trigger.notify()
        _wait_idle(trigger)
        trigger.notify()
        _wait_idle(trigger)
        assert fn.call_count == 2

    def test_cancel_drops_pending_run(self):
        fn = MagicMock()
        trigger = SyncTrigger(fn, debounce_seconds=0.5)
        trigger.notify()
        trigger.cancel()
        time.sleep(0.6)
        fn.assert_not_called()
        assert not trigger.busy


# ---------------------------------------------------------------------------
# SyncEventHandler
# ---------------------------------------------------------------------------

class TestSyncEventHandler:

    def setup_method(self):
        self.root = os.path.abspath("/tmp/ws")
        self.trigger = MagicMock()
        self.handler = SyncEventHandler(
            self.root, lambda p: p.endswith(".ts"), self.trigger, extra_skip_dirs=("fixtures",),
        )

    def _path(self, rel: str) -> str:
        return os.path.join(self.root, *rel.split("/"))

    def test_should_ignore(self):
        assert not self.handler.should_ignore(self._path("src/a.ts"))
        assert self.handler.should_ignore(self._path("README.md"))
        assert self.handler.should_ignore(self._path("node_modules/x/a.ts"))
        assert self.handler.should_ignore(self._path(".git/a.ts"))
        assert self.handler.should_ignore(self._path("fixtures/a.ts"))
        assert self.handler.should_ignore(os.path.abspath("/elsewhere/a.ts"))

    def test_relevant_events_notify(self):
        self.handler.on_modified(FileModifiedEvent(self._path("a.ts")))
        self.handler.on_created(FileCreatedEvent(self._path("b.ts")))
        self.handler.on_deleted(FileDeletedEvent(self._path("c.ts")))
        assert self.trigger.notify.call_count == 3

    def test_irrelevant_events_ignored(self):
        self.handler.on_modified(FileModifiedEvent(self._path("notes.md")))
        self.handler.on_modified(DirModifiedEvent(self._path("src")))
        self.trigger.notify.assert_not_called()

    def test_move_into_tracked_name_notifies_once(self):
        self.handler.on_moved(FileMovedEvent(self._path("a.tmp"), self._path("a.ts")))
        assert self.trigger.notify.call_count == 1
