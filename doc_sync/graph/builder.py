"""
GraphBuilder: turns parser entities into a :class:`CodeGraph` and answers
structural queries over an existing graph.

Edges are never parsed directly: every node carries its unresolved
references (calls, bases, imports) and :meth:`GraphBuilder.link` derives the
full edge set from them.  Merging a delta therefore re-links the whole graph
and can never leave an edge pointing at a removed node.
"""

from __future__ import annotations

import logging
import os
import posixpath
from collections import defaultdict
from typing import Iterable, Optional

from ..errors import GraphConstructionError
from .model import CodeEdge, CodeGraph, CodeNode, EdgeType, NodeType, RefKind
from .parser import RawEntity

logger = logging.getLogger(__name__)

# Edge types that express a dependency (containment does not)
DEPENDENCY_EDGES: frozenset[str] = frozenset({
    EdgeType.CALLS, EdgeType.IMPORTS, EdgeType.EXTENDS, EdgeType.IMPLEMENTS,
})

_STRIP_EXTS = (
    ".py", ".ts", ".tsx", ".mts", ".js", ".jsx", ".mjs", ".cjs", ".java",
)

_ENTRY_TYPES = frozenset({
    NodeType.FUNCTION, NodeType.METHOD, NodeType.COMPONENT, NodeType.MODULE,
})


# ---------------------------------------------------------------------------
# Node-ID helpers
# ---------------------------------------------------------------------------

def _module_id(file_path: str) -> str:
    return f"{NodeType.MODULE}:{file_path}"


def _entity_id(type_: str, file_path: str, qualified_name: str) -> str:
    if type_ in (NodeType.MODULE, NodeType.FILE):
        return f"{type_}:{file_path}"
    return f"{type_}:{file_path}::{qualified_name}"


def assign_ids(entities: list[RawEntity]) -> list[str]:
    """
    Derive one id per entity.

    Ids are ``{type}:{file}::{qualified name}``.  Entities of one file that
    share type and qualified name (overloads, redefinitions) all get an
    ``@{start_line}`` suffix.  Remaining duplicates raise
    :class:`GraphConstructionError`.
    """
    base = [_entity_id(e.type, e.file_path, e.qualified_name) for e in entities]
    counts: dict[str, int] = defaultdict(int)
    for b in base:
        counts[b] += 1
    ids = [
        f"{b}@{e.start_line}" if counts[b] > 1 else b
        for b, e in zip(base, entities)
    ]
    seen: set[str] = set()
    for node_id in ids:
        if node_id in seen:
            raise GraphConstructionError(f"Duplicate node id: {node_id}")
        seen.add(node_id)
    return ids


# ---------------------------------------------------------------------------
# Import resolution
# ---------------------------------------------------------------------------

def _path_keys(file_path: str) -> list[str]:
    """Extension-less lookup keys for a module file (``pkg/__init__`` → ``pkg`` too)."""
    stem = file_path.replace("\\", "/")
    for ext in _STRIP_EXTS:
        if stem.endswith(ext):
            stem = stem[: -len(ext)]
            break
    keys = [stem]
    head, _, tail = stem.rpartition("/")
    if tail in ("__init__", "index"):
        keys.append(head)
    return keys


class _ModuleIndex:
    """Lookup tables from import specs to module node ids."""

    def __init__(self, modules: list[CodeNode]) -> None:
        self.by_path: dict[str, str] = {}
        self.by_dotted: dict[str, str] = {}
        for node in sorted(modules, key=lambda n: n.file_path):
            for key in _path_keys(node.file_path):
                self.by_path.setdefault(key, node.id)
                parts = [p for p in key.split("/") if p]
                for i in range(len(parts)):
                    self.by_dotted.setdefault(".".join(parts[i:]), node.id)

    def resolve(self, spec: str, importer_path: str) -> Optional[str]:
        importer_dir = posixpath.dirname(importer_path.replace("\\", "/"))
        if spec.startswith(("./", "../")) or spec in (".", ".."):
            target = posixpath.normpath(posixpath.join(importer_dir, spec))
            for key in _path_keys(target):
                if key in self.by_path:
                    return self.by_path[key]
            return None
        if spec.startswith("."):
            dots = len(spec) - len(spec.lstrip("."))
            rest = spec[dots:]
            base_dir = importer_dir
            for _ in range(dots - 1):
                base_dir = posixpath.dirname(base_dir)
            target = posixpath.join(base_dir, rest.replace(".", "/")) if rest else base_dir
            target = posixpath.normpath(target) if target else ""
            if target.startswith(".."):
                return None
            return self.by_path.get(target)
        for prefix in ("@/", "~/"):
            if spec.startswith(prefix):
                spec = spec[len(prefix):]
        return self.by_dotted.get(spec.replace("/", "."))


# ---------------------------------------------------------------------------
# GraphBuilder
# ---------------------------------------------------------------------------

class GraphBuilder:
    """
    Builds and merges code graphs, and answers dependency queries.

    The builder is stateless; one instance can serve any number of graphs.
    """

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def build(self, entities: Iterable[RawEntity]) -> CodeGraph:
        """
        Construct a graph from a flat list of parsed entities.

        Raises
        ------
        GraphConstructionError
            If two entities map to the same node id.
        """
        graph = CodeGraph()
        self._insert(graph, list(entities))
        self.link(graph)
        return graph

    def merge(
        self,
        graph: CodeGraph,
        removed_paths: Iterable[str],
        entities: Iterable[RawEntity],
    ) -> CodeGraph:
        """
        Return a new graph with the files in *removed_paths* dropped and the
        files covered by *entities* fully replaced.

        *graph* itself is left untouched so readers holding it keep a
        consistent snapshot.
        """
        entities = list(entities)
        replaced = set(removed_paths) | {e.file_path for e in entities}
        merged = graph.copy()
        merged.remove_nodes(n.id for n in graph.nodes if n.file_path in replaced)
        self._insert(merged, entities)
        self.link(merged)
        return merged

    def _insert(self, graph: CodeGraph, entities: list[RawEntity]) -> None:
        entities = self._with_modules(entities)
        for entity, node_id in zip(entities, assign_ids(entities)):
            graph.add_node(CodeNode(
                id=node_id,
                label=entity.name,
                type=entity.type,
                file_path=entity.file_path,
                start_line=entity.start_line,
                end_line=entity.end_line,
                source_code=entity.source,
                parameters=list(entity.parameters),
                return_type=entity.return_type,
                language=entity.language,
                qualified_name=entity.qualified_name,
                docstring=entity.docstring,
                is_async=entity.is_async,
                references=list(entity.references),
            ))

    @staticmethod
    def _with_modules(entities: list[RawEntity]) -> list[RawEntity]:
        """Add a module entity for every file that lacks one."""
        by_file: dict[str, list[RawEntity]] = defaultdict(list)
        for e in entities:
            by_file[e.file_path].append(e)
        out: list[RawEntity] = []
        for file_path, group in by_file.items():
            if not any(e.type in (NodeType.MODULE, NodeType.FILE) for e in group):
                stem = os.path.splitext(os.path.basename(file_path))[0]
                out.append(RawEntity(
                    type=NodeType.MODULE,
                    name=stem,
                    file_path=file_path,
                    start_line=1,
                    end_line=max(e.end_line for e in group),
                    language=group[0].language,
                ))
            out.extend(group)
        return out

    # ------------------------------------------------------------------
    # Linking
    # ------------------------------------------------------------------

    def link(self, graph: CodeGraph) -> None:
        """
        Recompute parents and every edge of *graph* from node references.

        Resolution prefers targets in the referencing node's own file, then
        the first candidate by (file path, start line).  Unresolvable
        references produce no edge.
        """
        graph.clear_edges()
        nodes = graph.nodes
        by_file: dict[str, list[CodeNode]] = defaultdict(list)
        by_label: dict[str, list[CodeNode]] = defaultdict(list)
        for node in nodes:
            by_file[node.file_path].append(node)
            by_label[node.label].append(node)
        for candidates in by_label.values():
            candidates.sort(key=lambda n: (n.file_path, n.start_line, n.id))
        modules = _ModuleIndex([n for n in nodes if n.type == NodeType.MODULE])

        # Containment first so edge order reads top-down
        for node in nodes:
            parent_id = _parent_among(node, by_file[node.file_path])
            if parent_id != node.parent_id:
                node = graph.update_node(node.id, parent_id=parent_id)
            if parent_id is not None:
                graph.add_edge(CodeEdge(parent_id, node.id, EdgeType.CONTAINS))

        unresolved = 0
        for node in nodes:
            for ref in node.references:
                if ref.kind == RefKind.IMPORTS:
                    target = modules.resolve(ref.target, node.file_path)
                    label = ref.target
                else:
                    target = self._resolve_name(node, ref.kind, ref.target, by_label)
                    label = None
                if target is None or target == node.id:
                    unresolved += target is None
                    continue
                graph.add_edge(CodeEdge(node.id, target, ref.kind, label))
        logger.debug(
            "Linked graph: %d nodes, %d edges, %d unresolved references",
            len(graph), len(graph.edges), unresolved,
        )

    @staticmethod
    def _resolve_name(
        node: CodeNode,
        kind: str,
        name: str,
        by_label: dict[str, list[CodeNode]],
    ) -> Optional[str]:
        if kind == RefKind.CALLS:
            allowed = NodeType.CALLABLES | NodeType.TYPES
        else:
            allowed = NodeType.TYPES
        best: Optional[CodeNode] = None
        best_key: tuple = ()
        for cand in by_label.get(name, ()):
            if cand.type not in allowed or cand.id == node.id:
                continue
            key = (cand.file_path != node.file_path, cand.type not in NodeType.CALLABLES)
            if best is None or key < best_key:
                best, best_key = cand, key
        return best.id if best is not None else None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_dependencies(
        self,
        graph: CodeGraph,
        node_id: str,
        edge_types: frozenset[str] = DEPENDENCY_EDGES,
    ) -> list[CodeNode]:
        """
        Return nodes reached by outgoing edges of *node_id*.

        Parameters
        ----------
        graph:
            Graph to query.
        node_id:
            Starting node.  Unknown ids yield an empty list.
        edge_types:
            Edge types to follow; containment is excluded by default.
        """
        out: list[CodeNode] = []
        seen: set[str] = set()
        for edge in graph.out_edges(node_id):
            if edge.type in edge_types and edge.target not in seen:
                seen.add(edge.target)
                out.append(graph.get_node(edge.target))
        return out

    def get_dependents(
        self,
        graph: CodeGraph,
        node_id: str,
        edge_types: frozenset[str] = DEPENDENCY_EDGES,
    ) -> list[CodeNode]:
        """Return nodes with an edge whose target is *node_id*."""
        out: list[CodeNode] = []
        seen: set[str] = set()
        for edge in graph.in_edges(node_id):
            if edge.type in edge_types and edge.source not in seen:
                seen.add(edge.source)
                out.append(graph.get_node(edge.source))
        return out

    def find_parent(self, node: CodeNode, graph: CodeGraph) -> Optional[str]:
        """
        Resolve the containment parent of *node* from line ranges.

        Methods, functions and variables belong to the smallest enclosing
        class, interface, component or module of the same file; classes,
        interfaces and components belong to the module of their file;
        modules have no parent.
        """
        return _parent_among(node, graph.nodes_in_file(node.file_path))

    def find_entry_points(self, graph: CodeGraph) -> list[CodeNode]:
        """Callables and modules that nothing calls, imports or extends."""
        return [
            node for node in graph.nodes
            if node.type in _ENTRY_TYPES
            and not any(e.type in DEPENDENCY_EDGES for e in graph.in_edges(node.id))
        ]


def _parent_among(node: CodeNode, same_file: list[CodeNode]) -> Optional[str]:
    if node.type in (NodeType.MODULE, NodeType.FILE):
        return None
    if node.type in NodeType.TYPES:
        for cand in same_file:
            if cand.type == NodeType.MODULE:
                return cand.id
        for cand in same_file:
            if cand.type == NodeType.FILE:
                return cand.id
        return None

    best: Optional[CodeNode] = None
    for cand in same_file:
        if cand.id == node.id or cand.type not in NodeType.CONTAINERS:
            continue
        if not (cand.start_line <= node.start_line and node.end_line <= cand.end_line):
            continue
        if best is None or _span_key(cand) < _span_key(best):
            best = cand
    return best.id if best is not None else None


def _span_key(node: CodeNode) -> tuple:
    # Smaller span wins; on equal spans a type beats the module / file
    return (
        node.end_line - node.start_line,
        node.type in (NodeType.MODULE, NodeType.FILE),
        node.start_line,
        node.id,
    )
