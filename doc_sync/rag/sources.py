"""
External retrieval sources for federated search.

A source is anything with a ``name``, a ``timeout`` and a
``query(text, top_k)`` method returning :class:`ExternalHit` objects.
Failures are allowed to raise; :class:`~doc_sync.rag.service.RAGService`
contains them at the source boundary.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

import requests

if TYPE_CHECKING:
    from ..workspace import Workspace

logger = logging.getLogger(__name__)


@dataclass
class ExternalHit:
    """One result returned by an external source."""
    name: str
    type: str = ""
    summary: str = ""
    source_path: str = ""
    score: float = 0.0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.type,
            "summary": self.summary,
            "sourcePath": self.source_path,
            "score": self.score,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExternalHit":
        return cls(
            name=str(data.get("name", "")),
            type=str(data.get("type", "")),
            summary=str(data.get("summary", "")),
            source_path=str(data.get("sourcePath", data.get("source_path", ""))),
            score=float(data.get("score", 0.0) or 0.0),
        )


@runtime_checkable
class ExternalSource(Protocol):
    name: str
    timeout: float

    def query(self, text: str, top_k: int) -> list[ExternalHit]:
        ...


class HttpSource:
    """
    Search service reached over HTTP.

    POSTs ``{"query": text, "top_k": n}`` as JSON and accepts either a list
    of hits or ``{"results": [...]}``.

    Parameters
    ----------
    name:
        Label attached to this source's result batch.
    url:
        Endpoint URL.
    timeout:
        Seconds allowed for the whole query.
    session:
        Optional :class:`requests.Session` (tests inject a mock).
    """

    def __init__(
        self,
        name: str,
        url: str,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.name = name
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()

    def query(self, text: str, top_k: int) -> list[ExternalHit]:
        response = self._session.post(
            self.url,
            json={"query": text, "top_k": top_k},
            timeout=self.timeout,
        )
        response.raise_for_status()
        payload = response.json()
        if isinstance(payload, dict):
            payload = payload.get("results", [])
        if not isinstance(payload, list):
            raise ValueError(f"Unexpected response from {self.url}: {type(payload).__name__}")
        hits = [ExternalHit.from_dict(item) for item in payload if isinstance(item, dict)]
        return hits[:top_k]

    def __repr__(self) -> str:
        return f"HttpSource({self.name!r}, {self.url!r})"


class WorkspaceSource:
    """Federates another local :class:`~doc_sync.workspace.Workspace`."""

    def __init__(self, workspace: "Workspace", name: Optional[str] = None, timeout: float = 5.0) -> None:
        self.workspace = workspace
        self.name = name or workspace.root
        self.timeout = timeout

    def query(self, text: str, top_k: int) -> list[ExternalHit]:
        return [
            ExternalHit(
                name=hit.name,
                type=hit.metadata.get("type", ""),
                summary=hit.metadata.get("summary", ""),
                source_path=f"{hit.metadata.get('filePath', '')}:{hit.metadata.get('startLine', 0)}",
                score=hit.score,
            )
            for hit in self.workspace.search(text, top_k)
        ]
