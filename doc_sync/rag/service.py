"""
RAGService: question answering and federated search over one index
snapshot.

Answers are rendered from templates using the top search hits; nothing is
produced for a question whose best hit scores below the relevance floor.
A text generator may phrase the answer instead, but only when explicitly
requested.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from ..docs.generator import DocumentedNode, Strategy
from ..llm.base import TextGenerator
from .index import TIER_BOOST, RetrievalIndex, SearchHit
from .sources import ExternalHit, ExternalSource

logger = logging.getLogger(__name__)

NO_ANSWER = "I could not find anything in the indexed code that answers this question."

CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"
CONFIDENCE_LOW = "low"
CONFIDENCE_NONE = "none"

# Hits rendered into an answer
_ANSWER_HITS = 3
_DIGEST_HITS = 5


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class Answer:
    answer: str
    relevant_node_ids: list[str] = field(default_factory=list)
    confidence: str = CONFIDENCE_NONE
    strategy: str = Strategy.ANALYSIS

    def to_dict(self) -> dict:
        return {
            "answer": self.answer,
            "relevantNodeIds": list(self.relevant_node_ids),
            "confidence": self.confidence,
            "strategy": self.strategy,
        }


@dataclass
class SourceBatch:
    """Results of one external source; *error* is set when it failed."""
    source: str
    results: list[ExternalHit] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "results": [r.to_dict() for r in self.results],
            "error": self.error,
        }


@dataclass
class FederatedResult:
    local: list[SearchHit] = field(default_factory=list)
    external: list[SourceBatch] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "local": [h.to_dict() for h in self.local],
            "external": [b.to_dict() for b in self.external],
        }


def question_type(question: str) -> str:
    """Classify *question* as ``where``, ``what``, ``how`` or ``digest``."""
    first = question.strip().lower().split(maxsplit=1)
    word = first[0].rstrip("?,.:'s") if first else ""
    if word in ("where", "what", "how"):
        return word
    return "digest"


# ---------------------------------------------------------------------------
# RAGService
# ---------------------------------------------------------------------------

class RAGService:
    """
    Parameters
    ----------
    index:
        Retrieval index snapshot.
    docs:
        Documented nodes keyed by id, used for answer details.
    generator:
        Optional text generator for phrased answers.
    sources:
        External sources consulted by :meth:`search_with_external`.
    top_k:
        Default number of search hits.
    min_relevance, medium_confidence, high_confidence:
        Score thresholds for the ``low``, ``medium`` and ``high`` tiers.
    external_timeout:
        Timeout for sources that do not declare their own.
    """

    def __init__(
        self,
        index: RetrievalIndex,
        docs: Optional[Mapping[str, DocumentedNode]] = None,
        generator: Optional[TextGenerator] = None,
        sources: Iterable[ExternalSource] = (),
        top_k: int = 10,
        min_relevance: float = 0.5,
        medium_confidence: float = 3.0,
        high_confidence: float = 30.0,
        external_timeout: float = 5.0,
    ) -> None:
        self.index = index
        self.docs = docs or {}
        self.generator = generator
        self.sources = list(sources)
        self.top_k = top_k
        self.min_relevance = min_relevance
        self.medium_confidence = medium_confidence
        self.high_confidence = high_confidence
        self.external_timeout = external_timeout

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query: str, top_k: Optional[int] = None) -> list[SearchHit]:
        return self.index.search(query, top_k or self.top_k)

    def is_relevant(self, hit: SearchHit) -> bool:
        """A name match, or enough evidence from informative query terms."""
        return hit.tier > 0 or hit.evidence >= self.min_relevance

    def confidence_for(self, score: float) -> str:
        if score >= self.high_confidence:
            return CONFIDENCE_HIGH
        if score >= self.medium_confidence:
            return CONFIDENCE_MEDIUM
        if score >= self.min_relevance:
            return CONFIDENCE_LOW
        return CONFIDENCE_NONE

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    def _location(self, hit: SearchHit) -> str:
        return f"{hit.metadata.get('filePath', '?')}:{hit.metadata.get('startLine', 0)}"

    def _summary(self, hit: SearchHit) -> str:
        doc = self.docs.get(hit.id)
        return (doc.summary if doc else hit.metadata.get("summary", "")) or "No summary available."

    def _render(self, kind: str, question: str, hits: list[SearchHit]) -> str:
        if kind == "where":
            lines = [
                f"- {h.name} ({h.metadata.get('type', '')}) is defined in {self._location(h)}"
                for h in hits[:_ANSWER_HITS]
            ]
            return "Found in:\n" + "\n".join(lines)

        if kind == "what":
            return "\n\n".join(
                f"{h.name} ({h.metadata.get('type', '')}): {self._summary(h)}"
                for h in hits[:_ANSWER_HITS]
            )

        if kind == "how":
            top = hits[0]
            text = f"{top.name}: {self._summary(top)}"
            doc = self.docs.get(top.id)
            if doc and doc.dependencies:
                text += "\nIt relies on:\n" + "\n".join(f"- {d}" for d in doc.dependencies)
            if doc and doc.usage_examples:
                text += "\nExample:\n" + "\n".join(f"    {ex}" for ex in doc.usage_examples)
            others = [h.name for h in hits[1:_ANSWER_HITS]]
            if others:
                text += f"\nSee also: {', '.join(others)}"
            return text

        lines = [
            f"{i}. {h.name} ({h.metadata.get('type', '')}, {self._location(h)}): {self._summary(h)}"
            for i, h in enumerate(hits[:_DIGEST_HITS], 1)
        ]
        return f"Top matches for \"{question.strip()}\":\n" + "\n".join(lines)

    def _phrase(self, question: str, hits: list[SearchHit]) -> Optional[str]:
        if self.generator is None:
            return None
        try:
            if not self.generator.is_available():
                logger.info("Text generator unavailable; answering from templates")
                return None
            context = "\n".join(
                f"- {h.name} ({h.metadata.get('type', '')}, {self._location(h)}): {self._summary(h)}"
                for h in hits[:_DIGEST_HITS]
            )
            prompt = (
                "Answer the question using only the code entities below. "
                "Cite entity names; do not invent any.\n\n"
                f"Entities:\n{context}\n\nQuestion: {question}"
            )
            return self.generator.generate(prompt)
        except Exception as exc:
            logger.warning("Generated answer failed, using template: %s", exc)
            return None

    def answer_question(
        self,
        question: str,
        top_k: Optional[int] = None,
        use_generator: bool = False,
    ) -> Answer:
        """
        Answer *question* from the index.

        Parameters
        ----------
        question:
            Free-text question.
        top_k:
            Number of hits to consider.
        use_generator:
            Ask the text generator to phrase the answer.  Falls back to the
            template answer when the generator is missing or fails.

        Returns
        -------
        Answer
            ``confidence`` is ``"none"`` with no citations when no hit
            matches a name or shares an informative term with the question.
        """
        hits = [h for h in self.search(question, top_k) if self.is_relevant(h)]
        if not hits:
            logger.debug("No relevant hits for question %r", question)
            return Answer(NO_ANSWER, [], CONFIDENCE_NONE, Strategy.ANALYSIS)

        top = hits[0]
        confidence = self.confidence_for(TIER_BOOST[top.tier] + top.evidence)
        cited = [h.id for h in hits]
        if use_generator:
            phrased = self._phrase(question, hits)
            if phrased:
                return Answer(phrased, cited, confidence, Strategy.GENERATED)
        text = self._render(question_type(question), question, hits)
        return Answer(text, cited, confidence, Strategy.ANALYSIS)

    # ------------------------------------------------------------------
    # Federated search
    # ------------------------------------------------------------------

    def search_with_external(self, query: str, top_k: Optional[int] = None) -> FederatedResult:
        """
        Search locally and in every external source concurrently.

        Each source has its own timeout measured from dispatch.  A source
        that fails or times out yields an empty batch with ``error`` set;
        it never affects the local results or the other sources.
        """
        top_k = top_k or self.top_k
        if not self.sources:
            return FederatedResult(local=self.search(query, top_k))

        pool = ThreadPoolExecutor(
            max_workers=len(self.sources), thread_name_prefix="doc-sync-federate",
        )
        try:
            dispatched = [
                (source, time.monotonic(), pool.submit(source.query, query, top_k))
                for source in self.sources
            ]
            local = self.search(query, top_k)

            batches: list[SourceBatch] = []
            for source, started, future in dispatched:
                name = getattr(source, "name", repr(source))
                timeout = getattr(source, "timeout", None) or self.external_timeout
                remaining = max(0.0, timeout - (time.monotonic() - started))
                try:
                    results = list(future.result(timeout=remaining))[:top_k]
                    batches.append(SourceBatch(name, results))
                except FuturesTimeout:
                    future.cancel()
                    logger.warning("External source %s timed out after %.1fs", name, timeout)
                    batches.append(SourceBatch(name, [], f"timed out after {timeout:g}s"))
                except Exception as exc:
                    logger.warning("External source %s failed: %s", name, exc)
                    batches.append(SourceBatch(name, [], str(exc) or type(exc).__name__))
        finally:
            # Never wait on a slow source
            pool.shutdown(wait=False, cancel_futures=True)
        return FederatedResult(local=local, external=batches)
