"""
Code graph layer: data model, entity parser and graph builder.
"""

from .builder import GraphBuilder
from .model import CodeEdge, CodeGraph, CodeNode, EdgeType, NodeType, Parameter, Reference
from .parser import EntityParser, RawEntity, TreeSitterParser

__all__ = [
    "CodeEdge", "CodeGraph", "CodeNode", "EdgeType", "NodeType", "Parameter",
    "Reference", "EntityParser", "RawEntity", "TreeSitterParser", "GraphBuilder",
]
