"""
Unit tests for doc_sync.graph.model

Covers node validation, edge invariants, copy-on-write and JSON round-trips
of the graph container.
"""

from __future__ import annotations

import pytest

from doc_sync.errors import GraphConstructionError
from doc_sync.graph.model import (
    CodeEdge, CodeGraph, CodeNode, EdgeType, NodeType, Parameter, Reference,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _node(node_id: str, type_: str = NodeType.FUNCTION, start: int = 1, end: int = 2, **kw) -> CodeNode:
    return CodeNode(
        id=node_id,
        label=node_id.rsplit(":", 1)[-1],
        type=type_,
        file_path=kw.pop("file_path", "a.py"),
        start_line=start,
        end_line=end,
        **kw,
    )


def _small_graph() -> CodeGraph:
    g = CodeGraph()
    g.add_node(_node("module:a.py", NodeType.MODULE, 1, 20))
    g.add_node(_node("function:a.py::f", start=2, end=5))
    g.add_node(_node("function:a.py::g", start=7, end=9))
    g.add_edge(CodeEdge("module:a.py", "function:a.py::f", EdgeType.CONTAINS))
    g.add_edge(CodeEdge("function:a.py::f", "function:a.py::g", EdgeType.CALLS))
    return g


# ---------------------------------------------------------------------------
# CodeNode
# ---------------------------------------------------------------------------

class TestCodeNode:

    def test_rejects_unknown_type(self):
        with pytest.raises(ValueError):
            _node("x", type_="widget")

    def test_rejects_inverted_range(self):
        with pytest.raises(ValueError):
            _node("x", start=10, end=3)

    def test_single_line_range_allowed(self):
        node = _node("x", start=4, end=4)
        assert node.start_line == node.end_line == 4

    def test_dict_uses_camel_case_keys(self):
        node = _node(
            "method:a.py::A.m", NodeType.METHOD,
            parameters=[Parameter("id", "int")], return_type="User",
            references=[Reference("calls", "load")],
        )
        data = node.to_dict()
        assert data["filePath"] == "a.py"
        assert data["startLine"] == 1
        assert data["returnType"] == "User"
        assert CodeNode.from_dict(data) == node

    def test_content_key_ignores_documentation(self):
        a = _node("x")
        b = _node("x", documentation={"summary": "s", "strategy": "analysis"})
        assert a.content_key() == b.content_key()


# ---------------------------------------------------------------------------
# CodeGraph
# ---------------------------------------------------------------------------

class TestCodeGraph:

    def test_duplicate_id_raises(self):
        g = CodeGraph()
        g.add_node(_node("x"))
        with pytest.raises(GraphConstructionError):
            g.add_node(_node("x"))

    def test_edge_requires_both_endpoints(self):
        g = CodeGraph()
        g.add_node(_node("x"))
        assert g.add_edge(CodeEdge("x", "missing", EdgeType.CALLS)) is False
        assert g.edges == []

    def test_same_typed_edge_added_once(self):
        g = _small_graph()
        assert g.add_edge(CodeEdge("function:a.py::f", "function:a.py::g", EdgeType.CALLS)) is False
        assert len(g.out_edges("function:a.py::f")) == 1

    def test_removing_node_drops_its_edges(self):
        g = _small_graph()
        g.remove_nodes(["function:a.py::g"])
        for edge in g.edges:
            assert g.has_node(edge.source) and g.has_node(edge.target)
        assert g.out_edges("function:a.py::f") == []

    def test_insertion_order_is_stable(self):
        g = _small_graph()
        assert g.node_ids() == ["module:a.py", "function:a.py::f", "function:a.py::g"]

    def test_copy_is_independent(self):
        g = _small_graph()
        clone = g.copy()
        clone.remove_nodes(["function:a.py::f"])
        clone.update_node("function:a.py::g", label="renamed")
        assert g.has_node("function:a.py::f")
        assert g.get_node("function:a.py::g").label == "g"

    def test_update_node_replaces_object(self):
        g = _small_graph()
        before = g.get_node("function:a.py::f")
        after = g.update_node("function:a.py::f", parent_id="module:a.py")
        assert before.parent_id is None
        assert after.parent_id == "module:a.py"
        assert g.get_node("function:a.py::f") is after

    def test_unknown_id_accessors(self):
        g = _small_graph()
        assert g.get_node("nope") is None
        assert g.out_edges("nope") == []
        assert g.in_edges("nope") == []
        assert "nope" not in g

    def test_round_trip(self):
        g = _small_graph()
        restored = CodeGraph.from_dict(g.to_dict())
        assert restored.node_ids() == g.node_ids()
        assert restored.edges == g.edges

    def test_from_dict_drops_dangling_edges(self):
        data = _small_graph().to_dict()
        data["edges"].append({"source": "function:a.py::f", "target": "gone", "type": "calls"})
        restored = CodeGraph.from_dict(data)
        assert len(restored.edges) == 2

    def test_stats(self):
        stats = _small_graph().stats()
        assert stats["node_count"] == 3
        assert stats["edge_count"] == 2
        assert stats["file_count"] == 1
        assert stats["by_node_type"] == {"module": 1, "function": 2}
        assert stats["by_edge_type"] == {"contains": 1, "calls": 1}
