"""
Workspace: the per-repository engine handle.

A workspace owns the persisted state of one root directory::

    <root>/.doc_sync/
        fingerprints.db   # SQLite path -> content hash
        graph.json        # CodeGraph snapshot
        docs.json         # DocumentedNode map + retrieval index
        meta.json         # counts and last sync time
        docs/             # markdown export (on request)

Readers always work against one immutable ``(graph, docs, index)``
snapshot.  :meth:`Workspace.sync` builds the next snapshot on copies,
persists it and swaps it in under a short lock, so a reader never observes
a half-merged state.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .config import Config
from .docs.generator import PERSONAS, DocumentationGenerator, DocumentedNode, Strategy
from .docs.markdown import write_markdown
from .errors import DocSyncError, PersistenceError
from .graph.builder import GraphBuilder
from .graph.model import CodeGraph, CodeNode, NodeType
from .graph.parser import EntityParser, TreeSitterParser
from .llm.base import TextGenerator
from .rag.index import RetrievalIndex, SearchHit
from .rag.service import Answer, FederatedResult, RAGService
from .rag.sources import ExternalSource, HttpSource
from .sync.fingerprints import FileFingerprintCache
from .sync.updater import IncrementalUpdater, ProgressCallback, UpdateReport, UpdateResult
from .sync.watcher import SyncWatcher

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1

FINGERPRINTS_FILE = "fingerprints.db"
GRAPH_FILE = "graph.json"
DOCS_FILE = "docs.json"
META_FILE = "meta.json"
MARKDOWN_DIR = "docs"


@dataclass(frozen=True)
class Snapshot:
    """One consistent view of the workspace state."""
    graph: CodeGraph = field(default_factory=CodeGraph)
    docs: dict = field(default_factory=dict)
    index: RetrievalIndex = field(default_factory=RetrievalIndex)
    last_synced: Optional[float] = None


# ---------------------------------------------------------------------------
# Snapshot files
# ---------------------------------------------------------------------------

def _write_json(path: str, payload: dict) -> None:
    """Write *payload* to *path* atomically (temp file + ``os.replace``)."""
    tmp_path = f"{path}.tmp"
    try:
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, ensure_ascii=False)
        os.replace(tmp_path, path)
    except (OSError, TypeError, ValueError) as exc:
        try:
            os.remove(tmp_path)
        except OSError:
            pass
        raise PersistenceError(f"Cannot write {path}: {exc}") from exc


def _read_json(path: str) -> Optional[dict]:
    if not os.path.exists(path):
        return None
    with open(path, encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a JSON object")
    if data.get("version") != SNAPSHOT_VERSION:
        raise ValueError(f"{path} has unsupported version {data.get('version')!r}")
    return data


# ---------------------------------------------------------------------------
# Workspace
# ---------------------------------------------------------------------------

class Workspace:
    """
    Parameters
    ----------
    root:
        Repository root directory.
    config:
        Engine configuration; loaded from ``.doc_sync.yaml`` / env when None.
    parser:
        Entity parser; defaults to :class:`TreeSitterParser`.
    generator:
        Optional text generator for generated documentation and answers.
    sources:
        External retrieval sources; defaults to ``config.EXTERNAL_SOURCES``.
    """

    def __init__(
        self,
        root: str,
        config: Optional[Config] = None,
        parser: Optional[EntityParser] = None,
        generator: Optional[TextGenerator] = None,
        sources: Optional[Iterable[ExternalSource]] = None,
    ) -> None:
        self.root = os.path.abspath(root)
        if not os.path.isdir(self.root):
            raise DocSyncError(f"Workspace root is not a directory: {self.root}")
        self.config = config or Config.load(root=self.root)
        if self.config.PERSONA not in PERSONAS:
            raise ValueError(
                f"Unknown persona {self.config.PERSONA!r}; expected one of {', '.join(PERSONAS)}"
            )
        self.state_dir = self.config.state_path(self.root)
        self.parser = parser or TreeSitterParser()
        self.builder = GraphBuilder()
        self.generator = generator
        self.documenter = DocumentationGenerator(generator, self.builder)
        if sources is None:
            sources = [
                HttpSource(s["name"], s["url"], s["timeout"])
                for s in self.config.EXTERNAL_SOURCES
            ]
        self.sources = list(sources)

        self._sync_lock = threading.Lock()
        self._swap_lock = threading.Lock()
        self._snapshot: Optional[Snapshot] = None
        self._cache: Optional[FileFingerprintCache] = None

    def __repr__(self) -> str:
        return f"Workspace({self.root!r})"

    @property
    def persona(self) -> str:
        return self.config.PERSONA

    @property
    def cache(self) -> FileFingerprintCache:
        if self._cache is None:
            self._cache = FileFingerprintCache(os.path.join(self.state_dir, FINGERPRINTS_FILE))
        return self._cache

    def _path(self, name: str) -> str:
        return os.path.join(self.state_dir, name)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def snapshot(self) -> Snapshot:
        """Return the current snapshot, loading persisted state on first use."""
        snap = self._snapshot
        if snap is not None:
            return snap
        with self._swap_lock:
            if self._snapshot is None:
                self._snapshot = self._load()
            return self._snapshot

    def _load(self) -> Snapshot:
        try:
            graph_data = _read_json(self._path(GRAPH_FILE))
        except (OSError, ValueError) as exc:
            logger.warning("Discarding unreadable graph snapshot for %s: %s", self.root, exc)
            graph_data = None
            graph_corrupt = True
        else:
            graph_corrupt = False

        if graph_data is None:
            if graph_corrupt or self.cache.all_paths():
                # Fingerprints without a graph would hide every file from
                # the next sync; force a full rebuild instead.
                logger.info("No usable graph snapshot; clearing fingerprints for %s", self.root)
                self.cache.clear()
            return Snapshot()

        try:
            graph = CodeGraph.from_dict(graph_data)
        except (KeyError, TypeError, ValueError, DocSyncError) as exc:
            logger.warning("Discarding corrupt graph snapshot for %s: %s", self.root, exc)
            self.cache.clear()
            return Snapshot()
        synced_at = graph_data.get("syncedAt")

        docs, index = self._load_docs(graph, synced_at)
        logger.debug("Loaded %d nodes and %d documents for %s", len(graph), len(docs), self.root)
        return Snapshot(graph, docs, index, synced_at)

    def _load_docs(self, graph: CodeGraph, synced_at) -> tuple[dict, RetrievalIndex]:
        try:
            data = _read_json(self._path(DOCS_FILE))
            if data is not None and data.get("syncedAt") == synced_at and data.get("persona") == self.persona:
                docs = {
                    node_id: DocumentedNode.from_dict(raw)
                    for node_id, raw in data.get("documents", {}).items()
                }
                return docs, RetrievalIndex.from_dict(data.get("index", {}))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Discarding unreadable documentation snapshot: %s", exc)
        # Missing, stale or for another persona: derive again from the graph
        logger.info("Re-documenting %d nodes for persona %s", len(graph), self.persona)
        docs = self.documenter.document_graph(graph, self.persona)
        index = RetrievalIndex()
        index.index_documents(docs.values())
        index.set_order(graph.node_ids())
        return docs, index

    # ------------------------------------------------------------------
    # Persisting
    # ------------------------------------------------------------------

    def _persist(self, snap: Snapshot) -> None:
        """
        Write every snapshot file.  Raises :class:`PersistenceError`.

        The graph goes first; the docs and meta files carry its
        ``syncedAt`` stamp so a torn write is detected on load.
        """
        try:
            os.makedirs(self.state_dir, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot create state directory {self.state_dir}: {exc}") from exc
        stats = snap.graph.stats()
        _write_json(self._path(GRAPH_FILE), {
            "version": SNAPSHOT_VERSION,
            "syncedAt": snap.last_synced,
            **snap.graph.to_dict(),
        })
        _write_json(self._path(DOCS_FILE), {
            "version": SNAPSHOT_VERSION,
            "syncedAt": snap.last_synced,
            "persona": self.persona,
            "documents": {node_id: doc.to_dict() for node_id, doc in snap.docs.items()},
            "index": snap.index.to_dict(),
        })
        self._persist_meta(snap, stats)

    def _persist_meta(self, snap: Snapshot, stats: Optional[dict] = None) -> None:
        stats = stats or snap.graph.stats()
        _write_json(self._path(META_FILE), {
            "version": SNAPSHOT_VERSION,
            "root": self.root,
            "last_synced": snap.last_synced,
            "node_count": stats["node_count"],
            "edge_count": stats["edge_count"],
            "file_count": stats["file_count"],
        })

    def _swap(self, snap: Snapshot) -> None:
        with self._swap_lock:
            self._snapshot = snap

    # ------------------------------------------------------------------
    # Synchronization
    # ------------------------------------------------------------------

    def _affected_ids(self, old: CodeGraph, result: UpdateResult) -> set[str]:
        """Touched nodes, their one-hop neighbours and every node whose edges changed."""
        new = result.graph
        affected = set(result.touched_ids)
        for node_id in result.touched_ids:
            for edge in new.out_edges(node_id) + new.in_edges(node_id):
                affected.update((edge.source, edge.target))
        old_edges = {(e.source, e.target, e.type) for e in old.edges}
        new_edges = {(e.source, e.target, e.type) for e in new.edges}
        for source, target, _ in old_edges ^ new_edges:
            affected.update((source, target))
        return {node_id for node_id in affected if new.has_node(node_id)}

    def _next_snapshot(self, base: Snapshot, result: UpdateResult) -> Snapshot:
        graph = result.graph
        if graph is base.graph:
            graph = graph.copy()
        affected = self._affected_ids(base.graph, result)
        fresh = self.documenter.document_graph(graph, self.persona, node_ids=affected)
        for node_id, doc in fresh.items():
            graph.update_node(node_id, documentation={"summary": doc.summary, "strategy": doc.strategy})

        docs = {k: v for k, v in base.docs.items() if k not in result.removed_ids}
        docs.update(fresh)
        index = base.index.copy()
        index.remove(result.removed_ids)
        index.index_documents(fresh.values())
        index.set_order(graph.node_ids())
        logger.debug("Re-documented %d affected node(s)", len(fresh))
        return Snapshot(graph, docs, index, time.time())

    def _run_cycle(
        self,
        base: Snapshot,
        cancel_event: Optional[threading.Event],
        progress_callback: Optional[ProgressCallback],
        full: bool = False,
    ) -> UpdateResult:
        updater = IncrementalUpdater(
            self.root,
            self.cache,
            self.parser,
            self.builder,
            max_workers=self.config.MAX_WORKERS,
            extra_skip_dirs=self.config.EXTRA_SKIP_DIRS,
        )
        staged: list[Snapshot] = []

        def on_merged(result: UpdateResult) -> None:
            if result.graph is base.graph and base.last_synced is not None:
                snap = Snapshot(base.graph, base.docs, base.index, time.time())
                self._persist_meta(snap)
            else:
                snap = self._next_snapshot(base, result)
                self._persist(snap)
            staged.append(snap)

        result = updater.run(base.graph, cancel_event, progress_callback, on_merged, full=full)
        self._swap(staged[-1])
        return result

    def sync(
        self,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> UpdateReport:
        """
        Bring the workspace up to date with the files on disk.

        Only one cycle runs at a time; a concurrent call waits for the
        running one and then performs its own.

        Raises
        ------
        GraphConstructionError
            The merged entities could not form a valid graph.
        PersistenceError
            State could not be written; nothing was committed and the
            previous snapshot stays current.
        """
        with self._sync_lock:
            result = self._run_cycle(self.snapshot(), cancel_event, progress_callback)
        if self.config.PREFER_GENERATED and result.touched_ids:
            self.generate_docs(result.touched_ids)
        return result.report

    def rebuild(
        self,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> UpdateReport:
        """
        Analyze the whole root again, ignoring every fingerprint.

        The fingerprints are replaced only once the new snapshot is
        persisted; on failure the previous snapshot and cache stay current.
        """
        with self._sync_lock:
            logger.info("Rebuilding %s from scratch", self.root)
            result = self._run_cycle(Snapshot(), cancel_event, progress_callback, full=True)
        if self.config.PREFER_GENERATED and result.touched_ids:
            self.generate_docs(result.touched_ids)
        return result.report

    def generate_docs(self, node_ids: Optional[Iterable[str]] = None) -> int:
        """
        Replace analysis summaries with generated ones.

        Generation runs without holding any lock; results are applied only
        to nodes whose signature did not change meanwhile.  Returns the
        number of documents updated (0 when no generator is available).
        """
        if not self.documenter.generator_available():
            logger.info("Text generator unavailable; keeping analysis documentation")
            return 0
        snap = self.snapshot()
        ids = list(node_ids) if node_ids is not None else snap.graph.node_ids()
        produced = self.documenter.document_graph(
            snap.graph, self.persona, node_ids=ids, prefer_generated=True,
        )
        produced = {k: v for k, v in produced.items() if v.strategy == Strategy.GENERATED}
        if not produced:
            return 0

        with self._sync_lock:
            current = self.snapshot()
            graph = current.graph.copy()
            applied: dict[str, DocumentedNode] = {}
            for node_id, doc in produced.items():
                node = graph.get_node(node_id)
                if node is None or self.documenter.is_stale(doc, node):
                    continue
                graph.update_node(node_id, documentation={"summary": doc.summary, "strategy": doc.strategy})
                applied[node_id] = doc
            if not applied:
                return 0
            docs = dict(current.docs)
            docs.update(applied)
            index = current.index.copy()
            index.index_documents(applied.values())
            snap = Snapshot(graph, docs, index, current.last_synced)
            self._persist(snap)
            self._swap(snap)
        logger.info("Applied %d generated summaries", len(applied))
        return len(applied)

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    def export_graph(self) -> dict:
        """The whole graph as ``{nodes, edges}``."""
        return self.snapshot().graph.to_dict()

    def get_node(self, node_id: str) -> Optional[dict]:
        """Node detail with its full documentation, or None when unknown."""
        snap = self.snapshot()
        node = snap.graph.get_node(node_id)
        if node is None:
            return None
        detail = node.to_dict()
        doc = snap.docs.get(node_id)
        if doc is not None:
            detail["documentation"] = doc.to_dict()
        return detail

    def dependencies(self, node_id: str) -> list[CodeNode]:
        return self.builder.get_dependencies(self.snapshot().graph, node_id)

    def dependents(self, node_id: str) -> list[CodeNode]:
        return self.builder.get_dependents(self.snapshot().graph, node_id)

    def entry_points(self) -> list[CodeNode]:
        return self.builder.find_entry_points(self.snapshot().graph)

    def _rag(self, snap: Snapshot) -> RAGService:
        cfg = self.config
        return RAGService(
            snap.index,
            snap.docs,
            generator=self.generator,
            sources=self.sources,
            top_k=cfg.SEARCH_TOP_K,
            min_relevance=cfg.MIN_RELEVANCE,
            medium_confidence=cfg.MEDIUM_CONFIDENCE,
            high_confidence=cfg.HIGH_CONFIDENCE,
            external_timeout=cfg.EXTERNAL_TIMEOUT,
        )

    def search(self, query: str, top_k: Optional[int] = None) -> list[SearchHit]:
        return self._rag(self.snapshot()).search(query, top_k)

    def ask(self, question: str, top_k: Optional[int] = None, use_generator: bool = False) -> Answer:
        """Answer *question* from the current snapshot."""
        return self._rag(self.snapshot()).answer_question(question, top_k, use_generator)

    def search_with_external(self, query: str, top_k: Optional[int] = None) -> FederatedResult:
        return self._rag(self.snapshot()).search_with_external(query, top_k)

    def architecture(self, top_patterns: int = 10) -> dict:
        """
        High-level overview: counts by type, entry points, most frequent
        patterns and languages.
        """
        return self._architecture(self.snapshot(), top_patterns)

    def _architecture(self, snap: Snapshot, top_patterns: int = 10) -> dict:
        stats = snap.graph.stats()
        pattern_counts: Counter = Counter()
        for doc in snap.docs.values():
            pattern_counts.update(doc.patterns)
        language_counts: Counter = Counter()
        for node in snap.graph.nodes:
            if node.type == NodeType.MODULE and node.language:
                language_counts[node.language] += 1
        return {
            "nodeCount": stats["node_count"],
            "edgeCount": stats["edge_count"],
            "fileCount": stats["file_count"],
            "byNodeType": stats["by_node_type"],
            "byEdgeType": stats["by_edge_type"],
            "entryPoints": [
                {"id": n.id, "label": n.label, "type": n.type, "filePath": n.file_path}
                for n in self.builder.find_entry_points(snap.graph)
            ],
            "patterns": dict(pattern_counts.most_common(top_patterns)),
            "languages": dict(language_counts.most_common()),
        }

    def export_markdown(self, out_dir: Optional[str] = None) -> list[str]:
        """
        Write the documentation as markdown pages.

        Defaults to ``<state dir>/docs``.  Returns the written paths with the
        overview first.  Raises :class:`PersistenceError`.
        """
        snap = self.snapshot()
        docs = [snap.docs[i] for i in snap.graph.node_ids() if i in snap.docs]
        return write_markdown(
            out_dir or self._path(MARKDOWN_DIR),
            os.path.basename(self.root),
            self._architecture(snap),
            docs,
            snap.last_synced,
        )

    def status(self) -> dict:
        snap = self.snapshot()
        stats = snap.graph.stats()
        cache_stats = self.cache.stats()
        return {
            "root": self.root,
            "stateDir": self.state_dir,
            "persona": self.persona,
            "nodeCount": stats["node_count"],
            "edgeCount": stats["edge_count"],
            "fileCount": stats["file_count"],
            "trackedFiles": cache_stats["file_count"],
            "documentCount": len(snap.docs),
            "lastSynced": snap.last_synced,
            "syncing": self._sync_lock.locked(),
        }

    def watch(self, debounce_seconds: Optional[float] = None):
        """Return a :class:`SyncWatcher` for this workspace."""
        return SyncWatcher(self, debounce_seconds)
