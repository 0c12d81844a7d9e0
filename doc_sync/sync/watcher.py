"""
File watcher that keeps a workspace synchronized.

Uses watchdog to monitor the workspace root.  Relevant events feed a
debounced trigger that runs ``Workspace.sync()`` on a background thread;
events arriving while a sync is running are coalesced into exactly one
follow-up sync.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import TYPE_CHECKING, Callable, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .files import in_skipped_dir

if TYPE_CHECKING:
    from ..workspace import Workspace

logger = logging.getLogger(__name__)


class SyncTrigger:
    """
    Debounced, coalescing wrapper around a sync callable.

    Parameters
    ----------
    sync_fn:
        Callable run on a background thread once events settle.
    debounce_seconds:
        Quiet period after the last event before a sync starts.
    """

    def __init__(self, sync_fn: Callable[[], object], debounce_seconds: float = 0.5) -> None:
        self._sync_fn = sync_fn
        self._debounce = debounce_seconds
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._running = False
        self._dirty = False
        self.runs = 0

    def notify(self) -> None:
        """Record that something changed."""
        with self._lock:
            if self._running:
                self._dirty = True
                return
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._debounce, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
            if self._running:
                self._dirty = True
                return
            self._running = True
        while True:
            try:
                self._sync_fn()
            except Exception as exc:
                logger.warning("[watcher] Sync failed: %s", exc)
            with self._lock:
                self.runs += 1
                if not self._dirty:
                    self._running = False
                    return
                self._dirty = False

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._running or self._timer is not None


class SyncEventHandler(FileSystemEventHandler):
    """
    Watchdog event handler that filters events down to tracked source files.

    Parameters
    ----------
    root:
        Absolute workspace root (used to compute relative paths).
    accept:
        Predicate on a relative path, normally ``parser.supports``.
    trigger:
        Trigger notified for every relevant event.
    extra_skip_dirs:
        Directory names ignored in addition to the defaults.
    """

    def __init__(
        self,
        root: str,
        accept: Callable[[str], bool],
        trigger: SyncTrigger,
        extra_skip_dirs=(),
    ) -> None:
        super().__init__()
        self._root = os.path.abspath(root)
        self._accept = accept
        self._trigger = trigger
        self._extra_skip_dirs = tuple(extra_skip_dirs)

    # ------------------------------------------------------------------
    # Watchdog event dispatch
    # ------------------------------------------------------------------

    def on_modified(self, event) -> None:
        if not event.is_directory:
            self._handle(event.src_path)

    def on_created(self, event) -> None:
        if not event.is_directory:
            self._handle(event.src_path)

    def on_deleted(self, event) -> None:
        if not event.is_directory:
            self._handle(event.src_path)

    def on_moved(self, event) -> None:
        if not event.is_directory:
            self._handle(event.src_path, event.dest_path)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _rel_path(self, abs_path) -> Optional[str]:
        """Convert *abs_path* to a root-relative path, or None if outside."""
        if isinstance(abs_path, bytes):
            abs_path = os.fsdecode(abs_path)
        try:
            rel = os.path.relpath(abs_path, self._root)
        except ValueError:
            return None
        if rel.startswith(".."):
            return None
        return rel.replace(os.sep, "/")

    def should_ignore(self, abs_path) -> bool:
        """Return True if this path should not trigger a sync."""
        rel = self._rel_path(abs_path)
        if rel is None:
            return True
        if in_skipped_dir(rel, self._extra_skip_dirs):
            return True
        return not self._accept(rel)

    def _handle(self, *paths) -> None:
        for path in paths:
            if not self.should_ignore(path):
                logger.debug("[watcher] Change: %s", path)
                self._trigger.notify()
                return


class SyncWatcher:
    """
    High-level wrapper around watchdog that keeps one workspace in sync.

    Usage::

        watcher = SyncWatcher(workspace)
        watcher.start()   # blocking (call from a thread) or use start_background()
        watcher.stop()

    Parameters
    ----------
    workspace:
        The workspace to keep synchronized.
    debounce_seconds:
        Overrides the configured debounce delay.
    """

    def __init__(self, workspace: "Workspace", debounce_seconds: Optional[float] = None) -> None:
        self._workspace = workspace
        delay = workspace.config.DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        self.trigger = SyncTrigger(workspace.sync, delay)
        self.handler = SyncEventHandler(
            workspace.root,
            workspace.parser.supports,
            self.trigger,
            workspace.config.EXTRA_SKIP_DIRS,
        )
        self._observer: Optional[Observer] = None
        self._stop = threading.Event()

    def _start_observer(self) -> None:
        observer = Observer()
        observer.schedule(self.handler, self._workspace.root, recursive=True)
        observer.start()
        self._observer = observer
        logger.info("[watcher] Watching %s", self._workspace.root)

    def start(self) -> None:
        """
        Start watching the workspace root.

        Blocks until :meth:`stop` is called or the process is interrupted.
        For non-blocking use, call :meth:`start_background` instead.
        """
        self._start_observer()
        try:
            while not self._stop.is_set() and self._observer.is_alive():
                self._stop.wait(timeout=1)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def start_background(self) -> None:
        """Start the observer without blocking (watchdog runs its own thread)."""
        self._start_observer()

    def stop(self) -> None:
        """Stop the observer and drop any pending trigger."""
        self._stop.set()
        self.trigger.cancel()
        if self._observer is not None:
            self._observer.stop()
            if self._observer.is_alive():
                self._observer.join(timeout=5)
            self._observer = None
            logger.info("[watcher] Stopped")
