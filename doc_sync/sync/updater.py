"""
IncrementalUpdater: keeps a :class:`CodeGraph` in step with the files on
disk.

One cycle:
  1. Enumerate source files and hash their contents
  2. Classify each file against the fingerprint cache
     (unchanged / modified / added, plus removed)
  3. Re-parse added and modified files in a thread pool
  4. Merge the delta into a copy of the graph (serialized)
  5. Report node-level counts
  6. Commit new fingerprints, only after the merge (and the caller's
     persistence hook) succeeded
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from ..graph.builder import GraphBuilder
from ..graph.model import CodeGraph
from ..graph.parser import EntityParser, RawEntity
from .files import walk_source_files
from .fingerprints import FileFingerprintCache, compute_hash

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class Classification:
    """Result of comparing the current file listing with the cache."""
    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    unreadable: list[str] = field(default_factory=list)

    @property
    def to_parse(self) -> list[str]:
        return sorted(self.added + self.modified)


@dataclass
class UpdateReport:
    """
    Outcome of one update cycle.

    Attributes
    ----------
    nodes_added, nodes_modified, nodes_removed:
        Node-level diff between the previous and the merged graph.
    skipped_files:
        Files that could not be read or parsed; retried next cycle.
    cancelled:
        True if the cycle stopped early; unprocessed files are retried.
    """

    nodes_added: int = 0
    nodes_modified: int = 0
    nodes_removed: int = 0
    skipped_files: list[str] = field(default_factory=list)
    files_added: list[str] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    files_removed: list[str] = field(default_factory=list)
    cancelled: bool = False
    elapsed_seconds: float = 0.0

    @property
    def has_changes(self) -> bool:
        return bool(self.nodes_added or self.nodes_modified or self.nodes_removed)

    def to_dict(self) -> dict:
        return {
            "nodesAdded": self.nodes_added,
            "nodesModified": self.nodes_modified,
            "nodesRemoved": self.nodes_removed,
            "skippedFiles": list(self.skipped_files),
            "filesAdded": list(self.files_added),
            "filesModified": list(self.files_modified),
            "filesRemoved": list(self.files_removed),
            "cancelled": self.cancelled,
            "elapsedSeconds": self.elapsed_seconds,
        }


@dataclass
class UpdateResult:
    """The merged graph plus what changed in it."""
    graph: CodeGraph
    report: UpdateReport
    added_ids: set[str] = field(default_factory=set)
    modified_ids: set[str] = field(default_factory=set)
    removed_ids: set[str] = field(default_factory=set)

    @property
    def touched_ids(self) -> set[str]:
        return self.added_ids | self.modified_ids


@dataclass
class _Parsed:
    path: str
    hash: str
    entities: list[RawEntity]


class _Cancelled(Exception):
    pass


# ---------------------------------------------------------------------------
# IncrementalUpdater
# ---------------------------------------------------------------------------

class IncrementalUpdater:
    """
    Runs hash-based incremental update cycles for one workspace root.

    The updater holds no graph of its own: :meth:`run` takes the current
    graph and returns a new one, leaving the input untouched.  Callers must
    not run two cycles for the same root concurrently.

    Parameters
    ----------
    root:
        Workspace root directory.
    cache:
        Fingerprint cache for this root.
    parser:
        Entity parser (external collaborator).
    builder:
        Graph builder used for the merge.
    max_workers:
        Thread-pool size for re-parsing.
    extra_skip_dirs:
        Additional directory names to ignore while enumerating.
    """

    def __init__(
        self,
        root: str,
        cache: FileFingerprintCache,
        parser: EntityParser,
        builder: Optional[GraphBuilder] = None,
        max_workers: int = 4,
        extra_skip_dirs: Iterable[str] = (),
    ) -> None:
        self.root = os.path.abspath(root)
        self.cache = cache
        self.parser = parser
        self.builder = builder or GraphBuilder()
        self.max_workers = max(1, max_workers)
        self.extra_skip_dirs = tuple(extra_skip_dirs)

    # ------------------------------------------------------------------
    # Steps 1-2
    # ------------------------------------------------------------------

    def _read(self, rel_path: str) -> bytes:
        with open(os.path.join(self.root, rel_path), "rb") as fh:
            return fh.read()

    def enumerate(self) -> dict[str, Optional[str]]:
        """
        Return ``{relative path: content hash}`` for every source file.

        Unreadable files map to None.
        """
        current: dict[str, Optional[str]] = {}
        for rel_path in walk_source_files(self.root, self.parser.supports, self.extra_skip_dirs):
            try:
                current[rel_path] = compute_hash(self._read(rel_path))
            except OSError as exc:
                logger.warning("Cannot read %s: %s", rel_path, exc)
                current[rel_path] = None
        return current

    def classify(
        self,
        current: dict[str, Optional[str]],
        known_paths: Iterable[str] = (),
        full: bool = False,
    ) -> Classification:
        """
        Compare *current* hashes with the fingerprint cache.

        A path counts as removed when it is missing from *current* but
        either fingerprinted or listed in *known_paths* (the files the
        graph still holds nodes for).  With *full* the cache is ignored and
        every readable file is classified as added.
        """
        cached = {} if full else self.cache.all_hashes()
        result = Classification()
        for path in sorted(current):
            new_hash = current[path]
            old_hash = cached.get(path)
            if new_hash is None:
                result.unreadable.append(path)
            elif old_hash is None:
                result.added.append(path)
            elif old_hash != new_hash:
                result.modified.append(path)
            else:
                result.unchanged.append(path)
        result.removed = sorted((set(cached) | set(known_paths)) - set(current))
        return result

    # ------------------------------------------------------------------
    # Step 3
    # ------------------------------------------------------------------

    def _parse_one(self, rel_path: str, cancel_event: Optional[threading.Event]) -> _Parsed:
        if cancel_event is not None and cancel_event.is_set():
            raise _Cancelled(rel_path)
        data = self._read(rel_path)
        content = data.decode("utf-8", errors="replace")
        entities = list(self.parser.parse(rel_path, content))
        for entity in entities:
            if entity.file_path != rel_path:
                entity.file_path = rel_path
        return _Parsed(rel_path, compute_hash(data), entities)

    def _parse_all(
        self,
        paths: list[str],
        cancel_event: Optional[threading.Event],
        progress_callback: Optional[ProgressCallback],
        report: UpdateReport,
    ) -> list[_Parsed]:
        parsed: dict[str, _Parsed] = {}
        total = len(paths)
        done = 0
        with ThreadPoolExecutor(max_workers=self.max_workers,
                                thread_name_prefix="doc-sync-parse") as pool:
            futures = {pool.submit(self._parse_one, p, cancel_event): p for p in paths}
            for future in as_completed(futures):
                path = futures[future]
                done += 1
                if cancel_event is not None and cancel_event.is_set() and not report.cancelled:
                    report.cancelled = True
                    for pending in futures:
                        pending.cancel()
                if future.cancelled():
                    continue
                try:
                    parsed[path] = future.result()
                except _Cancelled:
                    report.cancelled = True
                    continue
                except Exception as exc:
                    logger.warning("Skipping %s: %s", path, exc)
                    report.skipped_files.append(path)
                    continue
                if progress_callback:
                    progress_callback(done, total, path)
        # Deterministic merge order
        return [parsed[p] for p in paths if p in parsed]

    # ------------------------------------------------------------------
    # Full cycle
    # ------------------------------------------------------------------

    def run(
        self,
        graph: CodeGraph,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
        on_merged: Optional[Callable[[UpdateResult], None]] = None,
        full: bool = False,
    ) -> UpdateResult:
        """
        Execute one update cycle against *graph*.

        Parameters
        ----------
        graph:
            Current graph; not modified.
        cancel_event:
            Checked before each file is parsed.  Files parsed before the
            event was set are merged and committed.
        progress_callback:
            Called with (current, total, path) as files finish parsing.
        on_merged:
            Called with the result after the merge and before fingerprints
            are committed.  If it raises, nothing is committed and the
            exception propagates.
        full:
            Re-parse every file regardless of the cache.  The cache is
            replaced wholesale in the final commit, so a failed full cycle
            leaves the previous fingerprints in place.

        Returns
        -------
        UpdateResult

        Raises
        ------
        GraphConstructionError
            If the merged entities contain duplicate ids.
        PersistenceError
            If the fingerprint cache cannot be read or written.
        """
        start = time.time()
        report = UpdateReport()

        classification = self.classify(self.enumerate(), graph.file_paths(), full)
        report.skipped_files.extend(classification.unreadable)
        to_parse = classification.to_parse
        logger.info(
            "Sync %s: %d added, %d modified, %d removed, %d unchanged",
            self.root, len(classification.added), len(classification.modified),
            len(classification.removed), len(classification.unchanged),
        )

        parsed = self._parse_all(to_parse, cancel_event, progress_callback, report)
        parsed_paths = {p.path for p in parsed}
        report.files_added = [p for p in classification.added if p in parsed_paths]
        report.files_modified = [p for p in classification.modified if p in parsed_paths]
        report.files_removed = list(classification.removed)

        # Step 4: merge (serialized)
        # Parsed files are replaced even when they yield no entities
        replaced = list(classification.removed) + [p.path for p in parsed]
        if replaced:
            merged = self.builder.merge(
                graph,
                replaced,
                [e for p in parsed for e in p.entities],
            )
        else:
            merged = graph

        # Step 5: report by id diff
        result = self._diff(graph, merged, parsed_paths | set(classification.removed))
        result.report = report
        report.nodes_added = len(result.added_ids)
        report.nodes_modified = len(result.modified_ids)
        report.nodes_removed = len(result.removed_ids)

        # Step 6: commit
        if on_merged is not None:
            on_merged(result)
        self.cache.commit(
            {p.path: p.hash for p in parsed}, classification.removed, replace_all=full,
        )

        report.elapsed_seconds = round(time.time() - start, 3)
        logger.info(
            "Sync complete: +%d ~%d -%d nodes, %d skipped%s in %.2fs",
            report.nodes_added, report.nodes_modified, report.nodes_removed,
            len(report.skipped_files), " (cancelled)" if report.cancelled else "",
            report.elapsed_seconds,
        )
        return result

    @staticmethod
    def _diff(old: CodeGraph, new: CodeGraph, replaced_paths: set[str]) -> UpdateResult:
        result = UpdateResult(graph=new, report=UpdateReport())
        if new is old:
            return result
        old_ids = set(old.node_ids())
        new_ids = set(new.node_ids())
        result.added_ids = new_ids - old_ids
        result.removed_ids = old_ids - new_ids
        for node_id in old_ids & new_ids:
            before = old.get_node(node_id)
            if before.file_path not in replaced_paths:
                continue
            if before.content_key() != new.get_node(node_id).content_key():
                result.modified_ids.add(node_id)
        return result
