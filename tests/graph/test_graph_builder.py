"""
Unit tests for doc_sync.graph.builder

Builds graphs from hand-written entities (no tree-sitter) and checks id
derivation, reference resolution, merge semantics and dependency queries.
"""

from __future__ import annotations

import pytest

from doc_sync.errors import GraphConstructionError
from doc_sync.graph.builder import GraphBuilder, assign_ids
from doc_sync.graph.model import EdgeType, NodeType, Reference
from doc_sync.graph.parser import RawEntity


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _e(type_, name, path, start, end, qualified=None, refs=()):
    return RawEntity(
        type=type_, name=name, file_path=path,
        start_line=start, end_line=end,
        qualified_name=qualified or name,
        language="typescript",
        references=[Reference(k, t) for k, t in refs],
    )


def _user_service_entities():
    """
    src/user.ts:
        class UserService           (1-10)
            method getUser          (2-5)  calls fetchFromDb
    src/db.ts:
        function fetchFromDb        (1-3)
    """
    return [
        _e(NodeType.MODULE, "user", "src/user.ts", 1, 10, refs=[("imports", "./db")]),
        _e(NodeType.CLASS, "UserService", "src/user.ts", 1, 10),
        _e(NodeType.METHOD, "getUser", "src/user.ts", 2, 5, "UserService.getUser",
           refs=[("calls", "fetchFromDb")]),
        _e(NodeType.MODULE, "db", "src/db.ts", 1, 3),
        _e(NodeType.FUNCTION, "fetchFromDb", "src/db.ts", 1, 3),
    ]


USER_SERVICE = "class:src/user.ts::UserService"
GET_USER = "method:src/user.ts::UserService.getUser"
FETCH = "function:src/db.ts::fetchFromDb"


# ---------------------------------------------------------------------------
# Ids
# ---------------------------------------------------------------------------

class TestAssignIds:

    def test_qualified_ids(self):
        ids = assign_ids(_user_service_entities())
        assert ids == [
            "module:src/user.ts", USER_SERVICE, GET_USER, "module:src/db.ts", FETCH,
        ]

    def test_overloads_get_line_suffix(self):
        ids = assign_ids([
            _e(NodeType.METHOD, "run", "A.java", 3, 4, "A.run"),
            _e(NodeType.METHOD, "run", "A.java", 6, 8, "A.run"),
        ])
        assert ids == ["method:A.java::A.run@3", "method:A.java::A.run@6"]

    def test_exact_duplicates_raise(self):
        with pytest.raises(GraphConstructionError):
            assign_ids([
                _e(NodeType.FUNCTION, "f", "a.ts", 3, 4),
                _e(NodeType.FUNCTION, "f", "a.ts", 3, 9),
            ])

    def test_ids_independent_of_position(self):
        entities = _user_service_entities()
        forward = dict(zip(assign_ids(entities), entities))
        backward = dict(zip(assign_ids(list(reversed(entities))), reversed(entities)))
        assert set(forward) == set(backward)


# ---------------------------------------------------------------------------
# Build / link
# ---------------------------------------------------------------------------

class TestBuild:

    def setup_method(self):
        self.builder = GraphBuilder()
        self.g = self.builder.build(_user_service_entities())

    def test_user_service_scenario(self):
        dependents = self.builder.get_dependents(self.g, FETCH)
        assert [n.id for n in dependents] == [GET_USER]
        assert self.builder.find_parent(self.g.get_node(GET_USER), self.g) == USER_SERVICE

    def test_parent_ids_assigned(self):
        assert self.g.get_node(GET_USER).parent_id == USER_SERVICE
        assert self.g.get_node(USER_SERVICE).parent_id == "module:src/user.ts"
        assert self.g.get_node("module:src/user.ts").parent_id is None

    def test_contains_edges(self):
        contains = {(e.source, e.target) for e in self.g.edges if e.type == EdgeType.CONTAINS}
        assert ("module:src/user.ts", USER_SERVICE) in contains
        assert (USER_SERVICE, GET_USER) in contains
        assert ("module:src/db.ts", FETCH) in contains

    def test_import_resolved(self):
        deps = self.builder.get_dependencies(self.g, "module:src/user.ts")
        assert [n.id for n in deps] == ["module:src/db.ts"]

    def test_dependencies_exclude_containment_by_default(self):
        assert self.builder.get_dependencies(self.g, USER_SERVICE) == []
        everything = self.builder.get_dependencies(
            self.g, USER_SERVICE, edge_types=frozenset({EdgeType.CONTAINS}),
        )
        assert [n.id for n in everything] == [GET_USER]

    def test_unknown_and_leaf_nodes(self):
        assert self.builder.get_dependencies(self.g, "nope") == []
        assert self.builder.get_dependents(self.g, "nope") == []
        assert self.builder.get_dependencies(self.g, FETCH) == []

    def test_unresolved_reference_produces_no_edge(self):
        g = self.builder.build([
            _e(NodeType.FUNCTION, "main", "m.ts", 1, 3, refs=[("calls", "doesNotExist")]),
        ])
        assert [e for e in g.edges if e.type == EdgeType.CALLS] == []

    def test_module_synthesized(self):
        g = self.builder.build([_e(NodeType.FUNCTION, "f", "lib/x.ts", 2, 4)])
        module = g.get_node("module:lib/x.ts")
        assert module is not None
        assert g.get_node("function:lib/x.ts::f").parent_id == module.id

    def test_same_file_target_preferred(self):
        g = self.builder.build([
            _e(NodeType.FUNCTION, "helper", "a.ts", 1, 2),
            _e(NodeType.FUNCTION, "helper", "b.ts", 1, 2),
            _e(NodeType.FUNCTION, "main", "b.ts", 4, 6, refs=[("calls", "helper")]),
        ])
        deps = self.builder.get_dependencies(g, "function:b.ts::main")
        assert [n.id for n in deps] == ["function:b.ts::helper"]

    def test_extends_and_implements(self):
        g = self.builder.build([
            _e(NodeType.INTERFACE, "Repo", "r.ts", 1, 3),
            _e(NodeType.CLASS, "Base", "r.ts", 5, 7),
            _e(NodeType.CLASS, "SqlRepo", "s.ts", 1, 9,
               refs=[("extends", "Base"), ("implements", "Repo")]),
        ])
        types = {(e.target, e.type) for e in g.out_edges("class:s.ts::SqlRepo")}
        assert ("class:r.ts::Base", EdgeType.EXTENDS) in types
        assert ("interface:r.ts::Repo", EdgeType.IMPLEMENTS) in types

    def test_self_call_skipped(self):
        g = self.builder.build([
            _e(NodeType.FUNCTION, "loop", "a.ts", 1, 3, refs=[("calls", "loop")]),
        ])
        assert g.out_edges("function:a.ts::loop") == []

    def test_entry_points(self):
        entry_ids = {n.id for n in self.builder.find_entry_points(self.g)}
        assert GET_USER in entry_ids
        assert "module:src/user.ts" in entry_ids
        assert FETCH not in entry_ids
        assert "module:src/db.ts" not in entry_ids


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------

class TestMerge:

    def setup_method(self):
        self.builder = GraphBuilder()
        self.g = self.builder.build(_user_service_entities())

    def test_input_graph_untouched(self):
        before = (self.g.node_ids(), self.g.edges)
        self.builder.merge(self.g, ["src/db.ts"], [])
        assert (self.g.node_ids(), self.g.edges) == before

    def test_deleted_file_leaves_no_dangling_edges(self):
        merged = self.builder.merge(self.g, ["src/db.ts"], [])
        assert not any(n.file_path == "src/db.ts" for n in merged.nodes)
        for edge in merged.edges:
            assert merged.has_node(edge.source)
            assert merged.has_node(edge.target)
        assert self.builder.get_dependencies(merged, GET_USER) == []

    def test_replaced_file_relinks_callers(self):
        merged = self.builder.merge(self.g, [], [
            _e(NodeType.MODULE, "db", "src/db.ts", 1, 8),
            _e(NodeType.FUNCTION, "fetchFromDb", "src/db.ts", 4, 8),
        ])
        dependents = self.builder.get_dependents(merged, FETCH)
        assert [n.id for n in dependents] == [GET_USER]
        assert merged.get_node(FETCH).start_line == 4

    def test_re_added_file_restores_edges(self):
        without = self.builder.merge(self.g, ["src/db.ts"], [])
        restored = self.builder.merge(without, [], [
            e for e in _user_service_entities() if e.file_path == "src/db.ts"
        ])
        assert sorted(restored.node_ids()) == sorted(self.g.node_ids())
        assert sorted(map(tuple, (e.to_dict().values() for e in restored.edges))) == \
            sorted(map(tuple, (e.to_dict().values() for e in self.g.edges)))
