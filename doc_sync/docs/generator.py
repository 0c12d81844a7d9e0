"""
DocumentationGenerator: turns graph nodes into persona-specific
documentation.

Two strategies are available:

* ``analysis``: deterministic, built from the node's signature, docstring,
  graph neighbourhood and detected idioms.  Always available.
* ``generated``: delegates the summary to a :class:`TextGenerator`
  (e.g. Ollama).  Only used when asked for and when the generator reports
  itself available.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import asdict, dataclass, field
from typing import Iterable, Optional

from ..errors import GeneratorUnavailableError
from ..graph.builder import GraphBuilder
from ..graph.model import CodeGraph, CodeNode, EdgeType, NodeType
from ..llm.base import TextGenerator
from .patterns import detect_patterns, ordered

logger = logging.getLogger(__name__)

PERSONAS = ("developer", "architect", "product-manager", "business-analyst")


class Strategy:
    ANALYSIS = "analysis"
    GENERATED = "generated"


# Source sent to the generator is truncated to keep prompts small
_MAX_PROMPT_SOURCE = 3000

_LAYER_HINTS = [
    (("components", "pages", "views", "ui", "screens", "templates"), "presentation layer"),
    (("routes", "controllers", "handlers", "api", "endpoints"), "API layer"),
    (("services", "service", "core", "domain", "usecases"), "service layer"),
    (("models", "entities", "schemas", "db", "repositories", "dao", "store"), "data layer"),
    (("utils", "helpers", "lib", "common", "shared"), "utility layer"),
    (("tests", "test", "__tests__", "spec"), "test suite"),
]

_CAPABILITIES = [
    ("HTTP Requests", "talks to external services"),
    ("Form Handling", "collects input from users"),
    ("Routing", "controls navigation between screens or endpoints"),
    ("Database Access", "reads and stores business data"),
    ("Local Storage", "remembers information in the browser"),
    ("State Management", "keeps track of what the user is doing"),
    ("Event Handling", "reacts to user actions"),
    ("File I/O", "reads and writes files"),
    ("Error Handling", "deals with failures gracefully"),
    ("Testing", "verifies that the product behaves correctly"),
]

_WORD_SPLIT = re.compile(r"[^A-Za-z0-9]+")
_CAMEL_SPLIT = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


# ---------------------------------------------------------------------------
# Output type
# ---------------------------------------------------------------------------

@dataclass
class DocumentedNode:
    """Documentation derived from a single :class:`CodeNode`."""

    id: str
    label: str
    type: str
    file_path: str
    start_line: int
    summary: str
    description: str
    signature: str
    dependencies: list[str] = field(default_factory=list)
    dependents: list[str] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)
    usage_examples: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    persona: str = "developer"
    strategy: str = Strategy.ANALYSIS

    _CAMEL = {
        "file_path": "filePath",
        "start_line": "startLine",
        "usage_examples": "usageExamples",
    }

    def to_dict(self) -> dict:
        return {self._CAMEL.get(k, k): v for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: dict) -> "DocumentedNode":
        reverse = {v: k for k, v in cls._CAMEL.items()}
        kwargs = {reverse.get(k, k): v for k, v in data.items()}
        return cls(**kwargs)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def split_identifier(name: str) -> list[str]:
    """Split ``getUserById`` / ``get_user_by_id`` into lowercase words."""
    words: list[str] = []
    for chunk in _WORD_SPLIT.split(name):
        words.extend(w.lower() for w in _CAMEL_SPLIT.split(chunk) if w)
    return words


def _first_sentence(text: str) -> str:
    text = " ".join(text.split())
    if not text:
        return ""
    match = re.search(r"(.+?[.!?])(\s|$)", text)
    sentence = match.group(1) if match else text
    return sentence if sentence.endswith((".", "!", "?")) else sentence + "."


def _join(names: list[str], limit: int = 5) -> str:
    if len(names) > limit:
        return ", ".join(names[:limit]) + f" and {len(names) - limit} more"
    return ", ".join(names)


def _layer(file_path: str) -> str:
    parts = [p.lower() for p in file_path.split("/")[:-1]]
    for hints, layer in _LAYER_HINTS:
        if any(p in hints for p in parts):
            return layer
    return "application code"


def _var_name(label: str) -> str:
    return (label[:1].lower() + label[1:]) if label else "obj"


# ---------------------------------------------------------------------------
# DocumentationGenerator
# ---------------------------------------------------------------------------

class DocumentationGenerator:
    """
    Produces summaries, signatures and :class:`DocumentedNode` projections.

    Parameters
    ----------
    generator:
        Optional text generator used by the ``generated`` strategy.
    builder:
        Graph builder used for dependency lookups.
    """

    def __init__(
        self,
        generator: Optional[TextGenerator] = None,
        builder: Optional[GraphBuilder] = None,
    ) -> None:
        self.generator = generator
        self.builder = builder or GraphBuilder()

    # ------------------------------------------------------------------
    # Capability
    # ------------------------------------------------------------------

    def generator_available(self) -> bool:
        if self.generator is None:
            return False
        try:
            return bool(self.generator.is_available())
        except Exception as exc:
            logger.warning("Text generator availability check failed: %s", exc)
            return False

    @staticmethod
    def _check_persona(persona: str) -> None:
        if persona not in PERSONAS:
            raise ValueError(
                f"Unknown persona {persona!r}; expected one of {', '.join(PERSONAS)}"
            )

    # ------------------------------------------------------------------
    # Pure derivations
    # ------------------------------------------------------------------

    @staticmethod
    def generate_signature(node: CodeNode) -> str:
        """
        Human-readable signature from type, label, parameters and return
        type, e.g. ``method getUser(id: int) -> User``.
        """
        if node.type in NodeType.CALLABLES:
            params = ", ".join(
                f"{p.name}: {p.type}" if p.type else p.name for p in node.parameters
            )
            sig = f"{node.type} {node.label}({params})"
            if node.return_type:
                sig += f" -> {node.return_type}"
            return sig
        return f"{node.type} {node.label}"

    @staticmethod
    def detect_patterns(source_code: str) -> frozenset[str]:
        return detect_patterns(source_code)

    def is_stale(self, documented: DocumentedNode, node: CodeNode) -> bool:
        """True when *documented* no longer matches the signature of *node*."""
        return documented.signature != self.generate_signature(node)

    # ------------------------------------------------------------------
    # Analysis facts
    # ------------------------------------------------------------------

    def _parent(self, node: CodeNode, graph: Optional[CodeGraph]) -> Optional[CodeNode]:
        if graph is None or node.parent_id is None:
            return None
        return graph.get_node(node.parent_id)

    def _children(self, node: CodeNode, graph: Optional[CodeGraph]) -> list[CodeNode]:
        if graph is None:
            return []
        return [
            graph.get_node(e.target) for e in graph.out_edges(node.id)
            if e.type == EdgeType.CONTAINS
        ]

    def _neighbour_labels(self, node: CodeNode, graph: Optional[CodeGraph]) -> tuple[list[str], list[str]]:
        if graph is None or not graph.has_node(node.id):
            return [], []
        deps = [n.label for n in self.builder.get_dependencies(graph, node.id)]
        users = [n.label for n in self.builder.get_dependents(graph, node.id)]
        return deps, users

    def _purpose(self, node: CodeNode, graph: Optional[CodeGraph]) -> str:
        if node.docstring:
            return _first_sentence(node.docstring)
        parent = self._parent(node, graph)
        params = [p.name for p in node.parameters]
        takes = f"takes {_join(params)}" if params else "takes no arguments"
        returns = f" and returns {node.return_type}" if node.return_type else ""

        if node.type == NodeType.FUNCTION:
            kind = "Async function" if node.is_async else "Function"
            return f"{kind} {node.label} {takes}{returns}."
        if node.type == NodeType.METHOD:
            owner = f" of {parent.label}" if parent is not None else ""
            return f"Method {node.label}{owner} {takes}{returns}."
        if node.type == NodeType.COMPONENT:
            props = f" accepting {_join(params)}" if params else ""
            return f"UI component {node.label}{props}."
        if node.type in (NodeType.CLASS, NodeType.INTERFACE):
            members = [c for c in self._children(node, graph) if c.type == NodeType.METHOD]
            noun = "Class" if node.type == NodeType.CLASS else "Interface"
            if members:
                return f"{noun} {node.label} with {len(members)} method(s): {_join([m.label for m in members])}."
            return f"{noun} {node.label}."
        if node.type in (NodeType.MODULE, NodeType.FILE):
            children = self._children(node, graph)
            if children:
                counts: dict[str, int] = {}
                for c in children:
                    counts[c.type] = counts.get(c.type, 0) + 1
                parts = [f"{n} {t}(s)" for t, n in sorted(counts.items())]
                return f"Module {node.label} defining {', '.join(parts)}."
            return f"Module {node.label}."
        return f"Module-level variable {node.label}."

    # ------------------------------------------------------------------
    # Persona summaries (analysis strategy)
    # ------------------------------------------------------------------

    def _analysis_summary(self, node: CodeNode, persona: str, graph: Optional[CodeGraph]) -> str:
        purpose = self._purpose(node, graph)
        patterns = ordered(detect_patterns(node.source_code))
        deps, users = self._neighbour_labels(node, graph)

        if persona == "developer":
            text = f"{purpose} Signature: `{self.generate_signature(node)}`."
            if patterns:
                text += f" Uses {_join(patterns)}."
            return text

        if persona == "architect":
            text = f"{node.label} is a {node.type} in the {_layer(node.file_path)} ({node.file_path})."
            if deps:
                text += f" Depends on {len(deps)}: {_join(deps)}."
            if users:
                text += f" Used by {len(users)}: {_join(users)}."
            if patterns:
                text += f" Patterns: {_join(patterns)}."
            return text

        if persona == "product-manager":
            caps = [desc for tag, desc in _CAPABILITIES if tag in patterns]
            if caps:
                text = f"{node.label} {_join(caps, limit=3)}."
            else:
                text = f"{node.label} is part of {os.path.basename(node.file_path)} and supports related features."
            if users:
                text += f" It is relied on in {len(users)} place(s)."
            return text

        # business-analyst
        words = " ".join(split_identifier(node.label)) or node.label
        text = f"{node.label} ({words}) is a {node.type}. {purpose}"
        if deps:
            text += f" It works together with {_join(deps)}."
        return text

    def _description(self, node: CodeNode, graph: Optional[CodeGraph]) -> str:
        lines = [
            f"{node.label} is a {node.type} defined in {node.file_path}:"
            f"{node.start_line}-{node.end_line}"
            + (f" ({node.language})." if node.language else ".")
        ]
        if node.docstring:
            lines.append(" ".join(node.docstring.split()))
        parent = self._parent(node, graph)
        if parent is not None:
            lines.append(f"It belongs to {parent.type} {parent.label}.")
        deps, users = self._neighbour_labels(node, graph)
        if deps:
            lines.append(f"It depends on {_join(deps, limit=10)}.")
        if users:
            lines.append(f"It is used by {_join(users, limit=10)}.")
        return " ".join(lines)

    # ------------------------------------------------------------------
    # Usage examples and keywords
    # ------------------------------------------------------------------

    def usage_examples(self, node: CodeNode, graph: Optional[CodeGraph] = None) -> list[str]:
        lang = node.language
        args = ", ".join(p.name for p in node.parameters)
        awaited = "await " if node.is_async else ""
        is_js = lang in ("javascript", "typescript", "tsx")

        if node.type == NodeType.FUNCTION:
            if lang == "python":
                return [f"result = {awaited}{node.label}({args})"]
            if is_js:
                return [f"const result = {awaited}{node.label}({args});"]
            return [f"{node.label}({args});"]
        if node.type == NodeType.METHOD:
            parent = self._parent(node, graph)
            owner = _var_name(parent.label) if parent is not None else "instance"
            call = f"{awaited}{owner}.{node.label}({args})"
            return [call if lang == "python" else call + ";"]
        if node.type == NodeType.COMPONENT:
            props = " ".join(f"{p}={{...}}" for p in (p.name for p in node.parameters) if p != "props")
            return [f"<{node.label}{' ' + props if props else ''} />"]
        if node.type == NodeType.CLASS:
            var = _var_name(node.label)
            if lang == "python":
                return [f"{var} = {node.label}()"]
            if lang == "java":
                return [f"{node.label} {var} = new {node.label}();"]
            return [f"const {var} = new {node.label}();"]
        if node.type == NodeType.INTERFACE:
            if lang == "java":
                return [f"class {node.label}Impl implements {node.label} {{ ... }}"]
            return [f"const value: {node.label} = {{ ... }};"]
        if node.type in (NodeType.MODULE, NodeType.FILE):
            if lang == "python":
                dotted = node.qualified_name or node.label
                return [f"import {dotted}"]
            if is_js:
                stem = os.path.splitext(node.file_path)[0]
                return [f"import * as {_var_name(node.label)} from './{stem}';"]
            if lang == "java" and node.qualified_name:
                return [f"import {node.qualified_name};"]
            return []
        return [node.label]

    def keywords(self, node: CodeNode, graph: Optional[CodeGraph] = None) -> list[str]:
        seen: dict[str, None] = {}
        candidates = list(split_identifier(node.label))
        candidates += [node.type, node.language]
        candidates += split_identifier(os.path.splitext(os.path.basename(node.file_path))[0])
        parent = self._parent(node, graph)
        if parent is not None:
            candidates += split_identifier(parent.label)
        candidates += [p.lower() for p in ordered(detect_patterns(node.source_code))]
        for word in candidates:
            if word and len(word) > 2:
                seen.setdefault(word, None)
        return list(seen)

    # ------------------------------------------------------------------
    # Generated strategy
    # ------------------------------------------------------------------

    def _build_prompt(self, node: CodeNode, graph: Optional[CodeGraph]) -> str:
        deps, users = self._neighbour_labels(node, graph)
        patterns = ordered(detect_patterns(node.source_code))
        source = node.source_code
        if len(source) > _MAX_PROMPT_SOURCE:
            source = source[:_MAX_PROMPT_SOURCE] + "\n... (truncated)"
        parts = [
            f"Signature: {self.generate_signature(node)}",
            f"File: {node.file_path} (lines {node.start_line}-{node.end_line})",
        ]
        if node.language:
            parts.append(f"Language: {node.language}")
        if node.docstring:
            parts.append(f"Existing docstring: {node.docstring}")
        if deps:
            parts.append(f"Depends on: {', '.join(deps)}")
        if users:
            parts.append(f"Used by: {', '.join(users)}")
        if patterns:
            parts.append(f"Detected patterns: {', '.join(patterns)}")
        parts.append(f"Source:\n```\n{source}\n```")
        parts.append("Write a concise summary (one or two sentences) of this code entity.")
        return "\n".join(parts)

    def generate_for_node(
        self,
        node: CodeNode,
        persona: str = "developer",
        strategy: str = Strategy.ANALYSIS,
        graph: Optional[CodeGraph] = None,
    ) -> str:
        """
        Return a summary of *node* for *persona*.

        Parameters
        ----------
        node:
            Node to document.
        persona:
            One of :data:`PERSONAS`.
        strategy:
            ``"analysis"`` or ``"generated"``.
        graph:
            Graph providing neighbourhood context; optional.

        Raises
        ------
        ValueError
            Unknown persona or strategy.
        GeneratorUnavailableError
            ``"generated"`` requested without a usable generator.
        """
        self._check_persona(persona)
        if strategy == Strategy.ANALYSIS:
            return self._analysis_summary(node, persona, graph)
        if strategy != Strategy.GENERATED:
            raise ValueError(f"Unknown documentation strategy {strategy!r}")
        if not self.generator_available():
            raise GeneratorUnavailableError("No text generator is available")
        return self.generator.generate(self._build_prompt(node, graph), persona=persona)

    # ------------------------------------------------------------------
    # DocumentedNode projections
    # ------------------------------------------------------------------

    def document_node(
        self,
        node: CodeNode,
        graph: Optional[CodeGraph],
        persona: str = "developer",
        prefer_generated: bool = False,
    ) -> DocumentedNode:
        """Build the :class:`DocumentedNode` for a single node."""
        self._check_persona(persona)
        use_generator = prefer_generated and self.generator_available()
        return self._document(node, graph, persona, use_generator)

    def _document(
        self,
        node: CodeNode,
        graph: Optional[CodeGraph],
        persona: str,
        use_generator: bool,
    ) -> DocumentedNode:
        strategy = Strategy.ANALYSIS
        summary = None
        if use_generator:
            try:
                summary = self.generate_for_node(node, persona, Strategy.GENERATED, graph)
                strategy = Strategy.GENERATED
            except Exception as exc:
                logger.warning("Generated summary failed for %s, using analysis: %s", node.id, exc)
        if summary is None:
            summary = self._analysis_summary(node, persona, graph)

        deps, users = self._neighbour_labels(node, graph)
        return DocumentedNode(
            id=node.id,
            label=node.label,
            type=node.type,
            file_path=node.file_path,
            start_line=node.start_line,
            summary=summary,
            description=self._description(node, graph),
            signature=self.generate_signature(node),
            dependencies=deps,
            dependents=users,
            patterns=ordered(detect_patterns(node.source_code)),
            usage_examples=self.usage_examples(node, graph),
            keywords=self.keywords(node, graph),
            persona=persona,
            strategy=strategy,
        )

    def document_graph(
        self,
        graph: CodeGraph,
        persona: str = "developer",
        node_ids: Optional[Iterable[str]] = None,
        prefer_generated: bool = False,
    ) -> dict[str, DocumentedNode]:
        """
        Document every node of *graph*, or only *node_ids* when given.

        The generator capability is checked once; when it is missing every
        node falls back to the analysis strategy.
        """
        self._check_persona(persona)
        use_generator = prefer_generated and self.generator_available()
        if prefer_generated and not use_generator:
            logger.info("Text generator unavailable; documenting with analysis strategy")
        if node_ids is None:
            targets = graph.nodes
        else:
            targets = [graph.get_node(i) for i in node_ids if graph.has_node(i)]
        docs = {n.id: self._document(n, graph, persona, use_generator) for n in targets}
        logger.debug("Documented %d node(s) for persona %s", len(docs), persona)
        return docs
