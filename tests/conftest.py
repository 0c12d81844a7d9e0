"""
Shared fixtures: a line-oriented fake parser so sync and workspace tests
run without tree-sitter grammars.

Fake source format, one entity per line::

    class UserService implements=Service
      method getUser calls=fetchFromDb
    function fetchFromDb
    import ./db
    !error

Indented lines are members of the preceding unindented type.  ``!error``
anywhere makes the whole file fail to parse.
"""

from __future__ import annotations

import os
import threading

import pytest

from doc_sync.errors import ParseError
from doc_sync.graph.model import NodeType, Parameter, Reference
from doc_sync.graph.parser import RawEntity

_LANGS = {".ts": "typescript", ".py": "python"}
_REF_KEYS = {"calls", "extends", "implements"}


class LineParser:
    """Parses the fake format above for ``.ts`` and ``.py`` files."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def supports(self, file_path: str) -> bool:
        return os.path.splitext(file_path)[1] in _LANGS

    def parse(self, file_path: str, content: str) -> list[RawEntity]:
        with self._lock:
            self.calls.append(file_path)
        if "!error" in content:
            raise ParseError(file_path, "fake syntax error")
        language = _LANGS[os.path.splitext(file_path)[1]]
        lines = content.splitlines()
        stem = os.path.splitext(os.path.basename(file_path))[0]
        module = RawEntity(
            type=NodeType.MODULE, name=stem, file_path=file_path,
            start_line=1, end_line=max(len(lines), 1), source=content,
            language=language,
        )
        out: list[RawEntity] = []
        owner = None
        for lineno, raw in enumerate(lines, 1):
            if not raw.strip():
                continue
            indented = raw.startswith(" ")
            words = raw.split()
            if words[0] == "import":
                module.references.append(Reference("imports", words[1]))
                continue
            kind, name, rest = words[0], words[1], words[2:]
            params = []
            refs = []
            returns = ""
            for item in rest:
                key, _, value = item.partition("=")
                if key in _REF_KEYS:
                    refs += [Reference(key, v) for v in value.split(",") if v]
                elif key == "params":
                    params = [Parameter(*p.split(":", 1)) for p in value.split(",") if p]
                elif key == "returns":
                    returns = value
            entity = RawEntity(
                type=kind, name=name, file_path=file_path,
                start_line=lineno, end_line=lineno, source=raw.strip(),
                parameters=params, return_type=returns, language=language,
                references=refs,
            )
            if indented and owner is not None:
                entity.qualified_name = f"{owner.name}.{name}"
                owner.end_line = lineno
            elif kind in NodeType.TYPES:
                owner = entity
            else:
                owner = None
            out.append(entity)
        return [module] + out


@pytest.fixture
def line_parser():
    return LineParser()


@pytest.fixture
def write_file(tmp_path):
    """Write ``rel_path`` under tmp_path with *content*; returns the absolute path."""

    def _write(rel_path: str, content: str) -> str:
        path = tmp_path / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return str(path)

    return _write
