"""
Unit tests for doc_sync.graph.parser

Grammar-dependent tests are skipped when the tree-sitter language package
is not installed.
"""

from __future__ import annotations

import textwrap

import pytest

from doc_sync.errors import ParseError
from doc_sync.graph.model import NodeType, Parameter, Reference
from doc_sync.graph.parser import TreeSitterParser, detect_language


PY_SOURCE = textwrap.dedent('''\
    """Users module."""
    import os
    from .db import fetch_from_db

    MAX_USERS = 10


    class UserService(BaseService):
        """Loads users."""

        def get_user(self, user_id: int) -> dict:
            return fetch_from_db(user_id)


    async def main():
        await helper()
''')

TS_SOURCE = textwrap.dedent('''\
    import { fetchFromDb } from './db';

    export interface Repo {
      find(id: number): User;
    }

    /** Service for users. */
    export class UserService implements Repo {
      getUser(id: number): User {
        return fetchFromDb(id);
      }
    }
''')

TSX_SOURCE = textwrap.dedent('''\
    export function Greeting({ name }) {
      return <h1>Hello {name}</h1>;
    }

    export function formatName(first, last) {
      return first + " " + last;
    }
''')


def _by_name(entities):
    return {e.name: e for e in entities}


# ---------------------------------------------------------------------------
# Language detection
# ---------------------------------------------------------------------------

class TestDetectLanguage:

    @pytest.mark.parametrize("path,lang", [
        ("a.py", "python"),
        ("src/app.js", "javascript"),
        ("src/App.jsx", "javascript"),
        ("src/a.ts", "typescript"),
        ("src/App.tsx", "tsx"),
        ("Main.java", "java"),
        ("README.md", None),
    ])
    def test_extensions(self, path, lang):
        assert detect_language(path) == lang

    def test_unsupported_extension_raises_parse_error(self):
        parser = TreeSitterParser()
        assert not parser.supports("notes.txt")
        with pytest.raises(ParseError) as info:
            parser.parse("notes.txt", "hello")
        assert info.value.file_path == "notes.txt"


# ---------------------------------------------------------------------------
# Python
# ---------------------------------------------------------------------------

class TestPythonParsing:

    def setup_method(self):
        pytest.importorskip("tree_sitter")
        pytest.importorskip("tree_sitter_python")
        self.entities = TreeSitterParser().parse("app/users.py", PY_SOURCE)
        self.named = _by_name(self.entities)

    def test_module_first(self):
        module = self.entities[0]
        assert module.type == NodeType.MODULE
        assert module.name == "users"
        assert module.qualified_name == "app.users"
        assert module.docstring == "Users module."
        assert module.start_line == 1

    def test_class(self):
        cls = self.named["UserService"]
        assert cls.type == NodeType.CLASS
        assert cls.docstring == "Loads users."
        assert Reference("extends", "BaseService") in cls.references

    def test_method(self):
        method = self.named["get_user"]
        assert method.type == NodeType.METHOD
        assert method.qualified_name == "UserService.get_user"
        assert method.parameters == [Parameter("user_id", "int")]
        assert method.return_type == "dict"
        assert Reference("calls", "fetch_from_db") in method.references

    def test_async_function(self):
        main = self.named["main"]
        assert main.type == NodeType.FUNCTION
        assert main.is_async
        assert Reference("calls", "helper") in main.references

    def test_imports_on_module(self):
        imports = [r.target for r in self.entities[0].references if r.kind == "imports"]
        assert "os" in imports
        assert ".db" in imports

    def test_variable(self):
        assert self.named["MAX_USERS"].type == NodeType.VARIABLE

    def test_line_ranges_valid(self):
        for e in self.entities:
            assert e.end_line >= e.start_line
            assert e.file_path == "app/users.py"


# ---------------------------------------------------------------------------
# TypeScript / TSX
# ---------------------------------------------------------------------------

class TestTypeScriptParsing:

    def setup_method(self):
        pytest.importorskip("tree_sitter")
        pytest.importorskip("tree_sitter_typescript")
        self.entities = TreeSitterParser().parse("src/user.ts", TS_SOURCE)
        self.named = _by_name(self.entities)

    def test_interface(self):
        assert self.named["Repo"].type == NodeType.INTERFACE

    def test_class_implements(self):
        cls = self.named["UserService"]
        assert cls.type == NodeType.CLASS
        assert Reference("implements", "Repo") in cls.references
        assert cls.docstring == "Service for users."

    def test_method_signature(self):
        method = self.named["getUser"]
        assert method.type == NodeType.METHOD
        assert method.qualified_name == "UserService.getUser"
        assert method.parameters == [Parameter("id", "number")]
        assert method.return_type == "User"
        assert Reference("calls", "fetchFromDb") in method.references

    def test_relative_import(self):
        assert Reference("imports", "./db") in self.entities[0].references


class TestTsxComponents:

    def setup_method(self):
        pytest.importorskip("tree_sitter")
        pytest.importorskip("tree_sitter_typescript")
        self.named = _by_name(TreeSitterParser().parse("src/Greeting.tsx", TSX_SOURCE))

    def test_capitalized_jsx_function_is_component(self):
        assert self.named["Greeting"].type == NodeType.COMPONENT

    def test_plain_function_stays_function(self):
        fn = self.named["formatName"]
        assert fn.type == NodeType.FUNCTION
        assert [p.name for p in fn.parameters] == ["first", "last"]
