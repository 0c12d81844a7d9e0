"""
NetworkX-backed code graph data model.

Nodes represent code entities (files, modules, classes, interfaces,
components, functions, methods, variables); edges represent structural
relationships (containment, calls, imports, inheritance).  The graph holds no
logic beyond accessors; construction and queries live in
:mod:`doc_sync.graph.builder`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Optional

import networkx as nx

from ..errors import GraphConstructionError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Node / Edge type constants
# ---------------------------------------------------------------------------

class NodeType:
    FILE = "file"
    MODULE = "module"
    CLASS = "class"
    INTERFACE = "interface"
    COMPONENT = "component"
    FUNCTION = "function"
    METHOD = "method"
    VARIABLE = "variable"

    ALL = frozenset({
        FILE, MODULE, CLASS, INTERFACE, COMPONENT, FUNCTION, METHOD, VARIABLE,
    })
    # Types that can enclose other entities
    CONTAINERS = frozenset({MODULE, FILE, CLASS, INTERFACE, COMPONENT})
    TYPES = frozenset({CLASS, INTERFACE, COMPONENT})
    CALLABLES = frozenset({FUNCTION, METHOD, COMPONENT})


class EdgeType:
    CONTAINS = "contains"
    CALLS = "calls"
    IMPORTS = "imports"
    EXTENDS = "extends"
    IMPLEMENTS = "implements"


class RefKind:
    """Kinds of unresolved outgoing references carried by a node."""
    CALLS = EdgeType.CALLS
    EXTENDS = EdgeType.EXTENDS
    IMPLEMENTS = EdgeType.IMPLEMENTS
    IMPORTS = EdgeType.IMPORTS


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Parameter:
    """A single function / method parameter."""
    name: str
    type: str = ""

    def to_dict(self) -> dict:
        return {"name": self.name, "type": self.type}


@dataclass(frozen=True)
class Reference:
    """An outgoing reference by name, resolved into an edge by the builder."""
    kind: str
    target: str

    def to_dict(self) -> dict:
        return {"kind": self.kind, "target": self.target}


@dataclass
class CodeNode:
    """
    A single analyzable code entity.

    Attributes
    ----------
    id:
        Stable identifier derived from file path and qualified name.
    label:
        Display name (the unqualified entity name).
    type:
        One of :attr:`NodeType.ALL`.
    file_path:
        Path relative to the workspace root.
    start_line, end_line:
        1-indexed inclusive source range.
    source_code:
        Exact source slice of the entity.
    parameters, return_type:
        Signature metadata for callables.
    documentation:
        Generated ``{"summary", "strategy"}`` pair, if any.
    parent_id:
        Containment parent, recomputed on every build / merge.
    references:
        Unresolved outgoing references (calls, bases, imports).
    """

    id: str
    label: str
    type: str
    file_path: str
    start_line: int
    end_line: int
    source_code: str = ""
    parameters: list[Parameter] = field(default_factory=list)
    return_type: str = ""
    documentation: Optional[dict] = None
    parent_id: Optional[str] = None
    language: str = ""
    qualified_name: str = ""
    docstring: str = ""
    is_async: bool = False
    references: list[Reference] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.type not in NodeType.ALL:
            raise ValueError(f"Unknown node type {self.type!r} for {self.id}")
        if self.end_line < self.start_line:
            raise ValueError(
                f"end_line {self.end_line} < start_line {self.start_line} for {self.id}"
            )

    def content_key(self) -> tuple:
        """Identity of the analysed content, ignoring derived fields."""
        return (
            self.label, self.type, self.file_path, self.start_line,
            self.end_line, self.source_code, tuple(self.parameters),
            self.return_type, tuple(self.references),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "type": self.type,
            "filePath": self.file_path,
            "startLine": self.start_line,
            "endLine": self.end_line,
            "sourceCode": self.source_code,
            "parameters": [p.to_dict() for p in self.parameters],
            "returnType": self.return_type,
            "documentation": self.documentation,
            "parentId": self.parent_id,
            "language": self.language,
            "qualifiedName": self.qualified_name,
            "docstring": self.docstring,
            "isAsync": self.is_async,
            "references": [r.to_dict() for r in self.references],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CodeNode":
        return cls(
            id=data["id"],
            label=data["label"],
            type=data["type"],
            file_path=data["filePath"],
            start_line=int(data["startLine"]),
            end_line=int(data["endLine"]),
            source_code=data.get("sourceCode", ""),
            parameters=[
                Parameter(p["name"], p.get("type", ""))
                for p in data.get("parameters", [])
            ],
            return_type=data.get("returnType", ""),
            documentation=data.get("documentation"),
            parent_id=data.get("parentId"),
            language=data.get("language", ""),
            qualified_name=data.get("qualifiedName", ""),
            docstring=data.get("docstring", ""),
            is_async=bool(data.get("isAsync", False)),
            references=[
                Reference(r["kind"], r["target"])
                for r in data.get("references", [])
            ],
        )


@dataclass(frozen=True)
class CodeEdge:
    """A directed relationship between two node ids."""
    source: str
    target: str
    type: str
    label: Optional[str] = None

    def to_dict(self) -> dict:
        d = {"source": self.source, "target": self.target, "type": self.type}
        if self.label:
            d["label"] = self.label
        return d


# ---------------------------------------------------------------------------
# CodeGraph
# ---------------------------------------------------------------------------

class CodeGraph:
    """
    Directed multi-graph of code entities.

    Node iteration follows insertion order, edge iteration follows source
    node order then insertion order, so both are deterministic.  At most one
    edge of each type exists between two nodes.

    Invariants: node ids are unique and every edge endpoint exists.
    """

    def __init__(self) -> None:
        self._g: nx.MultiDiGraph = nx.MultiDiGraph()

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_node(self, node: CodeNode) -> None:
        """Insert *node*; a duplicate id raises :class:`GraphConstructionError`."""
        if self._g.has_node(node.id):
            raise GraphConstructionError(f"Duplicate node id: {node.id}")
        self._g.add_node(node.id, node=node)

    def update_node(self, node_id: str, **changes: Any) -> CodeNode:
        """Replace the stored node with a copy carrying *changes*."""
        updated = replace(self._g.nodes[node_id]["node"], **changes)
        self._g.nodes[node_id]["node"] = updated
        return updated

    def add_edge(self, edge: CodeEdge) -> bool:
        """
        Add *edge* if both endpoints exist and no edge of the same type links
        them already.  Returns True when the edge was added.
        """
        if not self._g.has_node(edge.source) or not self._g.has_node(edge.target):
            return False
        if self._g.has_edge(edge.source, edge.target, key=edge.type):
            return False
        self._g.add_edge(edge.source, edge.target, key=edge.type, label=edge.label)
        return True

    def remove_nodes(self, node_ids: Iterable[str]) -> None:
        """Remove nodes and every edge touching them."""
        self._g.remove_nodes_from(list(node_ids))

    def clear_edges(self) -> None:
        self._g.clear_edges()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def has_node(self, node_id: str) -> bool:
        return self._g.has_node(node_id)

    def get_node(self, node_id: str) -> Optional[CodeNode]:
        if not self._g.has_node(node_id):
            return None
        return self._g.nodes[node_id]["node"]

    @property
    def nodes(self) -> list[CodeNode]:
        return [attrs["node"] for _, attrs in self._g.nodes(data=True)]

    @property
    def edges(self) -> list[CodeEdge]:
        return [
            CodeEdge(src, dst, key, data.get("label"))
            for src, dst, key, data in self._g.edges(keys=True, data=True)
        ]

    def node_ids(self) -> list[str]:
        return list(self._g.nodes)

    def nodes_in_file(self, file_path: str) -> list[CodeNode]:
        return [n for n in self.nodes if n.file_path == file_path]

    def file_paths(self) -> set[str]:
        return {n.file_path for n in self.nodes}

    def out_edges(self, node_id: str) -> list[CodeEdge]:
        if not self._g.has_node(node_id):
            return []
        return [
            CodeEdge(src, dst, key, data.get("label"))
            for src, dst, key, data in self._g.out_edges(node_id, keys=True, data=True)
        ]

    def in_edges(self, node_id: str) -> list[CodeEdge]:
        if not self._g.has_node(node_id):
            return []
        return [
            CodeEdge(src, dst, key, data.get("label"))
            for src, dst, key, data in self._g.in_edges(node_id, keys=True, data=True)
        ]

    def __len__(self) -> int:
        return self._g.number_of_nodes()

    def __contains__(self, node_id: object) -> bool:
        return self._g.has_node(node_id)

    def copy(self) -> "CodeGraph":
        """Structural copy; node objects are shared but replaced, never mutated."""
        instance = CodeGraph.__new__(CodeGraph)
        instance._g = self._g.copy()
        return instance

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        """JSON-serialisable ``{nodes, edges}`` snapshot."""
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CodeGraph":
        graph = cls()
        for nd in data.get("nodes", []):
            graph.add_node(CodeNode.from_dict(nd))
        dropped = 0
        for ed in data.get("edges", []):
            edge = CodeEdge(ed["source"], ed["target"], ed["type"], ed.get("label"))
            if not graph.add_edge(edge):
                dropped += 1
        if dropped:
            logger.warning("Dropped %d invalid edges while loading graph", dropped)
        return graph

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def stats(self) -> dict:
        """
        Return aggregate statistics about the graph.

        Returns
        -------
        dict
            Keys: node_count, edge_count, file_count, by_node_type,
            by_edge_type.
        """
        by_node: dict[str, int] = {}
        for node in self.nodes:
            by_node[node.type] = by_node.get(node.type, 0) + 1

        by_edge: dict[str, int] = {}
        for _, _, key in self._g.edges(keys=True):
            by_edge[key] = by_edge.get(key, 0) + 1

        return {
            "node_count": self._g.number_of_nodes(),
            "edge_count": self._g.number_of_edges(),
            "file_count": len(self.file_paths()),
            "by_node_type": by_node,
            "by_edge_type": by_edge,
        }
