"""
Tree-sitter entity parser.

Turns one source file into a flat list of :class:`RawEntity` records
(module, classes, interfaces, components, functions, methods, module-level
variables) with qualified names, signatures and unresolved references.

Supports: Python, JavaScript (incl. JSX), TypeScript, TSX, Java

Uses tree-sitter >= 0.25 API with individual language packages.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional, Protocol

from ..errors import ParseError
from .model import NodeType, Parameter, Reference, RefKind

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Language mapping
# ---------------------------------------------------------------------------

EXTENSION_TO_LANGUAGE: dict[str, str] = {
    ".py": "python",
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".mts": "typescript",
    ".tsx": "tsx",
    ".java": "java",
}

_JSX_LANGUAGES = frozenset({"javascript", "tsx"})


def detect_language(file_path: str) -> Optional[str]:
    """
    Return the tree-sitter language name for *file_path*, or None if unsupported.

    Parameters
    ----------
    file_path:
        Any file path; only the extension is examined.
    """
    ext = os.path.splitext(file_path)[1].lower()
    return EXTENSION_TO_LANGUAGE.get(ext)


# ---------------------------------------------------------------------------
# Parser output and protocol
# ---------------------------------------------------------------------------

@dataclass
class RawEntity:
    """One code entity as reported by a parser, before id assignment."""
    type: str
    name: str
    file_path: str
    start_line: int
    end_line: int
    source: str = ""
    qualified_name: str = ""
    parameters: list[Parameter] = field(default_factory=list)
    return_type: str = ""
    docstring: str = ""
    language: str = ""
    is_async: bool = False
    references: list[Reference] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.qualified_name:
            self.qualified_name = self.name


class EntityParser(Protocol):
    """What the updater needs from a source parser."""

    def supports(self, file_path: str) -> bool:
        ...

    def parse(self, file_path: str, content: str) -> list[RawEntity]:
        """Return the entities of one file; raise on failure."""
        ...


# ---------------------------------------------------------------------------
# Language → (tree-sitter Language object) lookup
# ---------------------------------------------------------------------------

def _get_lang_func(language: str):
    """Return the tree-sitter language() function for *language*."""
    if language == "python":
        import tree_sitter_python as m  # type: ignore
        return m.language
    elif language == "javascript":
        import tree_sitter_javascript as m  # type: ignore
        return m.language
    elif language == "typescript":
        import tree_sitter_typescript as m  # type: ignore
        return m.language_typescript
    elif language == "tsx":
        import tree_sitter_typescript as m  # type: ignore
        return m.language_tsx
    elif language == "java":
        import tree_sitter_java as m  # type: ignore
        return m.language
    raise ValueError(f"Unsupported language: {language}")


# Cache Language / Parser objects to avoid repeated construction
_LANG_CACHE: dict[str, object] = {}
_QUERY_CACHE: dict[tuple[str, str], object] = {}


def _get_ts_language(language: str):
    """Return the (cached) tree_sitter.Language object for *language*."""
    if language not in _LANG_CACHE:
        import tree_sitter as ts  # type: ignore
        _LANG_CACHE[language] = ts.Language(_get_lang_func(language)())
    return _LANG_CACHE[language]


def _new_ts_parser(language: str):
    # Parsers are not thread-safe; files are parsed from a worker pool.
    import tree_sitter as ts  # type: ignore
    return ts.Parser(_get_ts_language(language))


# ---------------------------------------------------------------------------
# Query helper (tree-sitter 0.25 API)
# ---------------------------------------------------------------------------

def _safe_query_matches(language: str, query_src: str, node) -> list[dict]:
    """
    Execute query safely, splitting on blank lines to try each sub-pattern.

    Patterns that do not compile for the installed grammar version are
    skipped.  Returns a flat list of capture dicts: [{capture_name: [Node]}].
    """
    import tree_sitter as ts  # type: ignore

    lang_obj = _get_ts_language(language)
    sub_patterns = [p.strip() for p in query_src.strip().split("\n\n") if p.strip()]
    all_results: list[dict] = []
    for pattern in sub_patterns:
        key = (language, pattern)
        q = _QUERY_CACHE.get(key)
        if q is None:
            try:
                q = ts.Query(lang_obj, pattern)
            except Exception as exc:
                logger.debug("Query pattern rejected for %s: %s", language, exc)
                _QUERY_CACHE[key] = False
                continue
            _QUERY_CACHE[key] = q
        if q is False:
            continue
        qc = ts.QueryCursor(q)
        for _pat_idx, caps in qc.matches(node):
            all_results.append(caps)
    return all_results


# ---------------------------------------------------------------------------
# Language-specific tree-sitter queries
# ---------------------------------------------------------------------------

# "types" captures class-like definitions, "functions" callables, "calls"
# call sites and "imports" import statements.  Sub-patterns are separated by
# blank lines and compiled independently.

_JS_FUNCTIONS = """\
(function_declaration
  name: (identifier) @func.name
  parameters: (formal_parameters) @func.params) @func.def

(generator_function_declaration
  name: (identifier) @func.name
  parameters: (formal_parameters) @func.params) @func.def

(method_definition
  name: (property_identifier) @func.name
  parameters: (formal_parameters) @func.params) @func.def

(variable_declarator
  name: (identifier) @func.name
  value: (arrow_function)) @func.def

(variable_declarator
  name: (identifier) @func.name
  value: (function_expression)) @func.def
"""

_JS_CALLS = """\
(call_expression function: (identifier) @call.name)

(call_expression function: (member_expression
  property: (property_identifier) @call.method))

(new_expression constructor: (identifier) @call.name)
"""

_TS_TYPES = """\
(class_declaration name: (type_identifier) @type.name) @type.def

(abstract_class_declaration name: (type_identifier) @type.name) @type.def

(interface_declaration name: (type_identifier) @type.name) @type.def
"""

_QUERIES: dict[str, dict[str, str]] = {
    "python": {
        "functions": """\
(function_definition
  name: (identifier) @func.name
  parameters: (parameters) @func.params) @func.def
""",
        "types": """\
(class_definition name: (identifier) @type.name) @type.def
""",
        "imports": """\
(import_statement) @import.stmt

(import_from_statement) @import.stmt
""",
        "calls": """\
(call function: (identifier) @call.name)

(call function: (attribute attribute: (identifier) @call.method))
""",
    },
    "javascript": {
        "functions": _JS_FUNCTIONS,
        "types": """\
(class_declaration name: (identifier) @type.name) @type.def
""",
        "imports": """\
(import_statement source: (string) @import.mod)

(call_expression
  function: (identifier) @req.keyword
  arguments: (arguments (string) @import.mod))
""",
        "calls": _JS_CALLS,
    },
    "typescript": {
        "functions": _JS_FUNCTIONS,
        "types": _TS_TYPES,
        "imports": """\
(import_statement source: (string) @import.mod)
""",
        "calls": _JS_CALLS,
    },
    "java": {
        "functions": """\
(method_declaration
  name: (identifier) @func.name
  parameters: (formal_parameters) @func.params) @func.def

(constructor_declaration
  name: (identifier) @func.name
  parameters: (formal_parameters) @func.params) @func.def
""",
        "types": """\
(class_declaration name: (identifier) @type.name) @type.def

(interface_declaration name: (identifier) @type.name) @type.def

(enum_declaration name: (identifier) @type.name) @type.def

(record_declaration name: (identifier) @type.name) @type.def
""",
        "imports": """\
(import_declaration (scoped_identifier) @import.mod)
""",
        "calls": """\
(method_invocation name: (identifier) @call.name)

(object_creation_expression type: (type_identifier) @call.name)
""",
    },
}
_QUERIES["tsx"] = _QUERIES["typescript"]

_INTERFACE_NODES = frozenset({"interface_declaration"})
_JSX_NODES = frozenset({"jsx_element", "jsx_self_closing_element", "jsx_fragment"})
_REACT_BASES = frozenset({"Component", "PureComponent"})
_SKIP_PARAMS = frozenset({"self", "cls", "this"})


# ---------------------------------------------------------------------------
# Node text helpers
# ---------------------------------------------------------------------------

def _text(node) -> str:
    """Decode a tree-sitter Node's text as UTF-8."""
    if node is None:
        return ""
    return node.text.decode("utf-8", errors="replace") if node.text else ""


def _first_node(caps: dict, *keys: str):
    """Return the first Node found under any of *keys* in a capture dict."""
    for k in keys:
        nodes = caps.get(k)
        if nodes:
            return nodes[0]
    return None


def _strip_type(raw: str) -> str:
    return raw.lstrip(":").strip()


def _simple_name(raw: str) -> str:
    """``React.Component<Props>`` → ``Component``."""
    raw = raw.split("<", 1)[0].split("(", 1)[0].strip()
    return raw.rsplit(".", 1)[-1].strip()


def _contains_type(node, wanted: frozenset[str]) -> bool:
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type in wanted:
            return True
        stack.extend(current.children)
    return False


# ---------------------------------------------------------------------------
# Structural helpers
# ---------------------------------------------------------------------------

def _python_docstring(def_node) -> str:
    """
    Extract the docstring from the body of a Python function/class/module.
    Returns empty string if not found.
    """
    body = def_node.child_by_field_name("body") if def_node.type != "module" else def_node
    if body is None:
        return ""
    for stmt in body.named_children:
        if stmt.type == "comment":
            continue
        if stmt.type == "expression_statement" and stmt.named_children:
            sub = stmt.named_children[0]
            if sub.type in ("string", "concatenated_string"):
                raw = _text(sub)
                for q in ('"""', "'''", '"', "'"):
                    if raw.startswith(q) and raw.endswith(q) and len(raw) >= 2 * len(q):
                        return raw[len(q):-len(q)].strip()
                return raw.strip()
        break
    return ""


def _leading_comment(def_node) -> str:
    """Return a ``/** ... */`` block immediately above a JS/TS/Java definition."""
    anchor = def_node
    while anchor.parent is not None and anchor.parent.type in (
        "lexical_declaration", "variable_declaration", "export_statement",
    ):
        anchor = anchor.parent
    prev = anchor.prev_named_sibling
    if prev is None or prev.type not in ("comment", "block_comment"):
        return ""
    raw = _text(prev)
    if not raw.startswith("/**"):
        return ""
    lines = []
    for line in raw[3:-2].splitlines():
        line = line.strip().lstrip("*").strip()
        if line:
            lines.append(line)
    return " ".join(lines)


def _param(node) -> Optional[Parameter]:
    """Return the parameter described by one child of a parameter list."""
    if node.type in ("comment", "line_comment", "block_comment"):
        return None
    if node.type == "identifier":
        name = _text(node)
        return Parameter(name) if name not in _SKIP_PARAMS else None
    if node.type in ("list_splat_pattern", "dictionary_splat_pattern",
                     "rest_pattern", "keyword_separator", "positional_separator"):
        name = _text(node)
        return Parameter(name) if name not in ("*", "/") else None

    name_node = (
        node.child_by_field_name("name")
        or node.child_by_field_name("pattern")
        or node.child_by_field_name("left")
    )
    if name_node is None:
        for sub in node.named_children:
            if sub.type == "identifier":
                name_node = sub
                break
    if name_node is None:
        return None
    name = _text(name_node)
    if name in _SKIP_PARAMS:
        return None
    type_node = node.child_by_field_name("type")
    return Parameter(name, _strip_type(_text(type_node)) if type_node else "")


def _extract_params(params_node) -> list[Parameter]:
    """Extract parameter names and annotations from a parameter-list node."""
    if params_node is None:
        return []
    params: list[Parameter] = []
    for child in params_node.named_children:
        p = _param(child)
        if p is not None:
            params.append(p)
    return params


def _is_async(fn_node) -> bool:
    return any(child.type == "async" for child in fn_node.children)


def _heritage(def_node) -> tuple[list[str], list[str]]:
    """Return (extends, implements) base names of a class-like definition."""
    extends: list[str] = []
    implements: list[str] = []

    def _names(container) -> list[str]:
        out = []
        for sub in container.named_children:
            if sub.type in ("type_list", "type_arguments", "arguments"):
                if sub.type == "type_list":
                    out.extend(_names(sub))
                continue
            name = _simple_name(_text(sub))
            if name and name != "object":
                out.append(name)
        return out

    for child in def_node.children:
        ctype = child.type
        if ctype == "argument_list":                       # python
            for sub in child.named_children:
                if sub.type == "keyword_argument":
                    continue
                name = _simple_name(_text(sub))
                if name and name != "object":
                    extends.append(name)
        elif ctype == "class_heritage":                    # js / ts
            clauses = [c for c in child.named_children
                       if c.type in ("extends_clause", "implements_clause")]
            if not clauses:
                extends.extend(_names(child))
            for clause in clauses:
                target = extends if clause.type == "extends_clause" else implements
                target.extend(_names(clause))
        elif ctype in ("superclass", "extends_type_clause", "extends_interfaces"):
            extends.extend(_names(child))                  # java / ts interfaces
        elif ctype == "super_interfaces":                  # java
            implements.extend(_names(child))
    return extends, implements


# ---------------------------------------------------------------------------
# Definition collection
# ---------------------------------------------------------------------------

@dataclass
class _Def:
    is_type: bool
    node: object
    name: str
    entity: RawEntity

    @property
    def span(self) -> tuple[int, int]:
        return self.node.start_byte, self.node.end_byte  # type: ignore[attr-defined]


def _innermost(defs: list[_Def], start: int, end: int, exclude=None) -> Optional[_Def]:
    best: Optional[_Def] = None
    for d in defs:
        if d is exclude:
            continue
        d_start, d_end = d.span
        if d_start <= start and end <= d_end and (d_start, d_end) != (start, end):
            if best is None or (d_end - d_start) < (best.span[1] - best.span[0]):
                best = d
    return best


def _enclosing_chain(defs: list[_Def], target: _Def) -> list[_Def]:
    """Enclosing definitions of *target*, outermost first."""
    start, end = target.span
    chain = [
        d for d in defs
        if d is not target and d.span[0] <= start and end <= d.span[1]
        and d.span != (start, end)
    ]
    chain.sort(key=lambda d: d.span[1] - d.span[0], reverse=True)
    return chain


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class TreeSitterParser:
    """
    Default :class:`EntityParser` built on tree-sitter grammars.

    Each :meth:`parse` call creates its own ``tree_sitter.Parser`` so the
    instance can be shared by a thread pool.
    """

    def supports(self, file_path: str) -> bool:
        return detect_language(file_path) is not None

    def parse(self, file_path: str, content: str) -> list[RawEntity]:
        """
        Parse *content* (the text of *file_path*) into entities.

        Raises
        ------
        ParseError
            Unsupported extension, missing grammar package, or a tree-sitter
            failure.
        """
        language = detect_language(file_path)
        if language is None:
            raise ParseError(file_path, "unsupported file extension")
        try:
            ts_parser = _new_ts_parser(language)
        except (ImportError, ValueError) as exc:
            raise ParseError(file_path, f"grammar unavailable: {exc}") from exc

        source_bytes = content.encode("utf-8")
        try:
            tree = ts_parser.parse(source_bytes)
        except Exception as exc:
            raise ParseError(file_path, f"parse error: {exc}") from exc

        root = tree.root_node
        if root.has_error:
            logger.debug("Syntax errors in %s; extracting what parsed", file_path)
        return _Extractor(file_path, language, source_bytes, root).run()


class _Extractor:
    """Single-use walker producing the entities of one syntax tree."""

    def __init__(self, file_path: str, language: str, source: bytes, root) -> None:
        self.file_path = file_path
        self.language = language
        self.source = source
        self.root = root
        self.queries = _QUERIES[language]
        self.defs: list[_Def] = []

    # -- helpers ----------------------------------------------------------

    def _slice(self, node) -> str:
        return self.source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")

    def _entity(self, type_: str, name: str, node, **kwargs) -> RawEntity:
        return RawEntity(
            type=type_,
            name=name,
            file_path=self.file_path,
            start_line=node.start_point[0] + 1,
            end_line=max(node.end_point[0] + 1, node.start_point[0] + 1),
            source=self._slice(node),
            language=self.language,
            **kwargs,
        )

    def _docstring(self, def_node) -> str:
        if self.language == "python":
            return _python_docstring(def_node)
        return _leading_comment(def_node)

    # -- passes -----------------------------------------------------------

    def run(self) -> list[RawEntity]:
        module = self._module_entity()
        self._collect_types()
        self._collect_functions()
        self._qualify()
        self._collect_calls(module)
        self._collect_imports(module)
        variables = self._collect_variables()

        ordered = sorted(
            (d.entity for d in self.defs),
            key=lambda e: (e.start_line, -e.end_line),
        )
        return [module] + ordered + variables

    def _module_entity(self) -> RawEntity:
        stem = os.path.splitext(self.file_path.replace("\\", "/"))[0]
        name = os.path.basename(stem)
        if name in ("__init__", "index") and "/" in stem:
            name = stem.rsplit("/", 2)[-2]
        entity = self._entity(NodeType.MODULE, name, self.root)
        entity.start_line = 1
        entity.source = self.source.decode("utf-8", errors="replace")
        entity.qualified_name = stem.replace("/", ".")
        entity.docstring = self._docstring(self.root) if self.language == "python" else ""
        return entity

    def _collect_types(self) -> None:
        for caps in _safe_query_matches(self.language, self.queries["types"], self.root):
            def_node = _first_node(caps, "type.def")
            name_node = _first_node(caps, "type.name")
            if def_node is None or name_node is None:
                continue
            name = _text(name_node)
            extends, implements = _heritage(def_node)
            if def_node.type in _INTERFACE_NODES:
                type_ = NodeType.INTERFACE
            elif self.language in _JSX_LANGUAGES and _REACT_BASES & set(extends):
                type_ = NodeType.COMPONENT
            else:
                type_ = NodeType.CLASS
            refs = [Reference(RefKind.EXTENDS, b) for b in extends]
            refs += [Reference(RefKind.IMPLEMENTS, i) for i in implements]
            entity = self._entity(
                type_, name, def_node,
                docstring=self._docstring(def_node),
                references=refs,
            )
            self.defs.append(_Def(True, def_node, name, entity))

    def _collect_functions(self) -> None:
        seen: set[tuple[int, int]] = set()
        for caps in _safe_query_matches(self.language, self.queries["functions"], self.root):
            def_node = _first_node(caps, "func.def")
            name_node = _first_node(caps, "func.name")
            if def_node is None or name_node is None:
                continue
            span = (def_node.start_byte, def_node.end_byte)
            if span in seen:
                continue
            seen.add(span)

            # For `const f = () => {}` the callable is the declarator's value
            fn_node = def_node
            if def_node.type == "variable_declarator":
                fn_node = def_node.child_by_field_name("value") or def_node
            params_node = _first_node(caps, "func.params") or fn_node.child_by_field_name("parameters")
            if params_node is None and fn_node.child_by_field_name("parameter") is not None:
                params = [Parameter(_text(fn_node.child_by_field_name("parameter")))]
            else:
                params = _extract_params(params_node)

            ret_node = fn_node.child_by_field_name("return_type")
            if ret_node is None and self.language == "java" and def_node.type == "method_declaration":
                ret_node = def_node.child_by_field_name("type")

            name = _text(name_node)
            entity = self._entity(
                NodeType.FUNCTION, name, def_node,
                parameters=params,
                return_type=_strip_type(_text(ret_node)) if ret_node else "",
                docstring=self._docstring(def_node),
                is_async=_is_async(fn_node),
            )
            self.defs.append(_Def(False, def_node, name, entity))

    def _qualify(self) -> None:
        """Assign qualified names and decide function / method / component."""
        for d in self.defs:
            chain = _enclosing_chain(self.defs, d)
            d.entity.qualified_name = ".".join([c.name for c in chain] + [d.name])
            if d.is_type:
                continue
            parent = chain[-1] if chain else None
            if parent is not None and parent.is_type:
                d.entity.type = NodeType.METHOD
            elif (
                self.language in _JSX_LANGUAGES
                and parent is None
                and d.name[:1].isupper()
                and _contains_type(d.node, _JSX_NODES)
            ):
                d.entity.type = NodeType.COMPONENT

    def _collect_calls(self, module: RawEntity) -> None:
        callables = [d for d in self.defs if not d.is_type]
        seen: dict[int, set[str]] = {}
        for caps in _safe_query_matches(self.language, self.queries["calls"], self.root):
            callee_node = _first_node(caps, "call.name", "call.method")
            if callee_node is None:
                continue
            callee = _text(callee_node)
            if not callee:
                continue
            owner_def = _innermost(callables, callee_node.start_byte, callee_node.end_byte)
            owner = owner_def.entity if owner_def is not None else module
            bucket = seen.setdefault(id(owner), set())
            if callee in bucket:
                continue
            bucket.add(callee)
            owner.references.append(Reference(RefKind.CALLS, callee))

    def _collect_imports(self, module: RawEntity) -> None:
        specs: list[str] = []
        for caps in _safe_query_matches(self.language, self.queries["imports"], self.root):
            stmt = _first_node(caps, "import.stmt")
            if stmt is not None:
                specs.extend(_python_import_specs(stmt))
                continue
            keyword = _first_node(caps, "req.keyword")
            if keyword is not None and _text(keyword) != "require":
                continue
            mod_node = _first_node(caps, "import.mod")
            if mod_node is not None:
                specs.append(_text(mod_node).strip("\"'`<> "))
        seen: set[str] = set()
        for spec in specs:
            if spec and spec not in seen:
                seen.add(spec)
                module.references.append(Reference(RefKind.IMPORTS, spec))

    def _collect_variables(self) -> list[RawEntity]:
        """Module-level, non-callable variable declarations."""
        out: list[RawEntity] = []
        seen: set[str] = set()

        def _add(name: str, node) -> None:
            if not name or name in seen:
                return
            seen.add(name)
            out.append(self._entity(NodeType.VARIABLE, name, node))

        for stmt in self.root.named_children:
            if self.language == "python":
                if stmt.type != "expression_statement" or not stmt.named_children:
                    continue
                assign = stmt.named_children[0]
                if assign.type != "assignment":
                    continue
                left = assign.child_by_field_name("left")
                if left is not None and left.type == "identifier":
                    _add(_text(left), stmt)
            elif self.language != "java":
                decl = stmt
                if decl.type == "export_statement":
                    decl = decl.child_by_field_name("declaration") or decl
                if decl.type not in ("lexical_declaration", "variable_declaration"):
                    continue
                for declarator in decl.named_children:
                    if declarator.type != "variable_declarator":
                        continue
                    value = declarator.child_by_field_name("value")
                    if value is not None and value.type in (
                        "arrow_function", "function_expression", "function",
                    ):
                        continue
                    name_node = declarator.child_by_field_name("name")
                    if name_node is not None and name_node.type == "identifier":
                        _add(_text(name_node), declarator)
        return out


def _python_import_specs(stmt) -> list[str]:
    """Module specs named by a Python import statement."""
    specs: list[str] = []
    if stmt.type == "import_statement":
        for child in stmt.children_by_field_name("name"):
            target = child.child_by_field_name("name") if child.type == "aliased_import" else child
            specs.append(_text(target))
        return specs

    module_node = stmt.child_by_field_name("module_name")
    module = _text(module_node)
    if not module:
        return specs
    specs.append(module)
    sep = "" if module.endswith(".") else "."
    for child in stmt.children_by_field_name("name"):
        target = child.child_by_field_name("name") if child.type == "aliased_import" else child
        name = _text(target)
        if name:
            specs.append(f"{module}{sep}{name}")
    return specs
