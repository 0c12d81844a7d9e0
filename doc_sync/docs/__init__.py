from .generator import PERSONAS, DocumentationGenerator, DocumentedNode, Strategy
from .markdown import render_node, render_overview, write_markdown
from .patterns import detect_patterns

__all__ = [
    "PERSONAS",
    "DocumentationGenerator",
    "DocumentedNode",
    "Strategy",
    "detect_patterns",
    "render_node",
    "render_overview",
    "write_markdown",
]
