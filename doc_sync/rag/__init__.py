"""
Retrieval layer: keyword index, question answering and federated search.
"""

from .index import IndexEntry, RetrievalIndex, SearchHit, tokenize
from .service import Answer, FederatedResult, RAGService, SourceBatch
from .sources import ExternalHit, ExternalSource, HttpSource, WorkspaceSource

__all__ = [
    "IndexEntry", "RetrievalIndex", "SearchHit", "tokenize",
    "Answer", "FederatedResult", "RAGService", "SourceBatch",
    "ExternalHit", "ExternalSource", "HttpSource", "WorkspaceSource",
]
