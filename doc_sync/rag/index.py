"""
Inverted keyword index over documented nodes.

Scoring has two parts:

* a name tier (exact label, label contains query, query contains label)
  that always dominates, and
* an IDF-weighted term overlap that orders results within a tier.

Ties fall back to graph order so results are deterministic.
"""

from __future__ import annotations

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..docs.generator import DocumentedNode

logger = logging.getLogger(__name__)

TIER_EXACT = 3
TIER_LABEL_CONTAINS = 2
TIER_QUERY_CONTAINS = 1

TIER_BOOST = {TIER_EXACT: 100.0, TIER_LABEL_CONTAINS: 50.0, TIER_QUERY_CONTAINS: 30.0, 0: 0.0}

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]+")
_CAMEL = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")

# Question and template vocabulary that never identifies a node on its own
STOPWORDS = frozenset({
    "about", "all", "and", "any", "are", "can", "code", "define", "defined",
    "did", "does", "find", "for", "from", "has", "have", "how", "implemented",
    "into", "its", "located", "not", "our", "that", "the", "their", "there",
    "this", "use", "used", "uses", "was", "what", "when", "where", "which",
    "who", "why", "with", "work", "works", "you",
})


def tokenize(text: str) -> set[str]:
    """
    Split *text* on camelCase, snake_case and punctuation boundaries.

    Tokens are lowercased and only kept when longer than two characters.

    >>> sorted(tokenize("getUserById"))
    ['get', 'user']
    """
    tokens: set[str] = set()
    for chunk in _NON_ALNUM.split(text or ""):
        for part in _CAMEL.split(chunk):
            part = part.lower()
            if len(part) > 2:
                tokens.add(part)
    return tokens


@dataclass(frozen=True)
class IndexEntry:
    """One searchable document."""
    id: str
    tokens: frozenset[str]
    metadata: dict = field(default_factory=dict, hash=False, compare=False)

    @property
    def name(self) -> str:
        return self.metadata.get("name", "")


@dataclass
class SearchHit:
    """A ranked search result."""
    id: str
    score: float
    tier: int
    term_score: float
    metadata: dict
    evidence: float = 0.0

    @property
    def name(self) -> str:
        return self.metadata.get("name", "")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "score": round(self.score, 4),
            "name": self.metadata.get("name", ""),
            "type": self.metadata.get("type", ""),
            "summary": self.metadata.get("summary", ""),
            "filePath": self.metadata.get("filePath", ""),
            "startLine": self.metadata.get("startLine", 0),
        }


def _entry_tokens(doc: DocumentedNode) -> frozenset[str]:
    tokens = set(tokenize(doc.label))
    if doc.label:
        tokens.add(doc.label.lower())
    for text in (doc.summary, doc.description, doc.file_path, doc.signature):
        tokens |= tokenize(text)
    for word in doc.keywords:
        tokens |= tokenize(word)
    for tag in doc.patterns:
        tokens |= tokenize(tag)
    return frozenset(tokens)


class RetrievalIndex:
    """
    Keyword index supporting partial re-indexing.

    Not thread-safe for writers: the workspace updates a :meth:`copy` and
    swaps it in, so readers only ever see a complete index.
    """

    def __init__(self) -> None:
        self._entries: dict[str, IndexEntry] = {}
        self._df: Counter = Counter()
        self._order: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _put(self, entry: IndexEntry) -> None:
        self._drop(entry.id)
        self._entries[entry.id] = entry
        self._df.update(entry.tokens)

    def _drop(self, entry_id: str) -> None:
        old = self._entries.pop(entry_id, None)
        if old is None:
            return
        self._df.subtract(old.tokens)
        for tok in old.tokens:
            if self._df[tok] <= 0:
                del self._df[tok]

    def index_documents(self, docs: Iterable[DocumentedNode]) -> int:
        """
        Insert or replace the entries for *docs*.

        Entries for other ids are left alone, so passing only the documents
        of changed nodes performs a partial re-index.  Returns the number of
        entries written.
        """
        count = 0
        for doc in docs:
            self._put(IndexEntry(
                id=doc.id,
                tokens=_entry_tokens(doc),
                metadata={
                    "name": doc.label,
                    "type": doc.type,
                    "summary": doc.summary,
                    "filePath": doc.file_path,
                    "startLine": doc.start_line,
                },
            ))
            count += 1
        return count

    def remove(self, ids: Iterable[str]) -> None:
        for entry_id in ids:
            self._drop(entry_id)
            self._order.pop(entry_id, None)

    def set_order(self, ids: Iterable[str]) -> None:
        """Record graph order, used to break score ties."""
        self._order = {entry_id: i for i, entry_id in enumerate(ids)}

    def copy(self) -> "RetrievalIndex":
        clone = RetrievalIndex()
        clone._entries = dict(self._entries)
        clone._df = Counter(self._df)
        clone._order = dict(self._order)
        return clone

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._entries

    def get(self, entry_id: str) -> Optional[IndexEntry]:
        return self._entries.get(entry_id)

    def idf(self, token: str) -> float:
        df = self._df.get(token, 0)
        if df <= 0:
            return 0.0
        return math.log(len(self._entries) / df + 1)

    def informative(self, token: str) -> bool:
        """
        False for stopwords and, in a multi-document index, for tokens that
        every document contains.
        """
        if token in STOPWORDS:
            return False
        df = self._df.get(token, 0)
        return df > 0 and (df < len(self._entries) or len(self._entries) == 1)

    @staticmethod
    def name_tier(label: str, query: str) -> int:
        label = label.lower()
        query = query.strip().lower()
        if not label or not query:
            return 0
        if label == query:
            return TIER_EXACT
        if query in label:
            return TIER_LABEL_CONTAINS
        if len(label) > 3 and label in query:
            return TIER_QUERY_CONTAINS
        return 0

    def search(self, query: str, top_k: int = 10) -> list[SearchHit]:
        """
        Return up to *top_k* hits for *query*, best first.

        Results are sorted by (name tier, term score, graph order); an exact
        label match therefore always outranks any term overlap.  Entries
        with a zero score are omitted.  ``SearchHit.evidence`` is the part of
        the term score contributed by :meth:`informative` tokens.
        """
        if not query or not query.strip() or top_k <= 0:
            return []
        q_tokens = tokenize(query) | {query.strip().lower()}
        weights = {t: self.idf(t) for t in q_tokens}
        useful = {t for t in q_tokens if self.informative(t)}
        fallback = len(self._order)

        hits: list[tuple[tuple, SearchHit]] = []
        for entry in self._entries.values():
            matched = [t for t, w in weights.items() if w and t in entry.tokens]
            term = sum(weights[t] for t in matched)
            tier = self.name_tier(entry.name, query)
            score = TIER_BOOST[tier] + term
            if score <= 0:
                continue
            order = self._order.get(entry.id, fallback)
            evidence = sum(weights[t] for t in matched if t in useful)
            hit = SearchHit(entry.id, score, tier, term, entry.metadata, evidence)
            hits.append(((-tier, -term, order, entry.id), hit))
        hits.sort(key=lambda pair: pair[0])
        return [hit for _, hit in hits[:top_k]]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        ordered_ids = sorted(self._entries, key=lambda i: (self._order.get(i, len(self._order)), i))
        return {
            "entries": [
                {
                    "id": entry_id,
                    "tokens": sorted(self._entries[entry_id].tokens),
                    "metadata": self._entries[entry_id].metadata,
                }
                for entry_id in ordered_ids
            ],
            "order": sorted(self._order, key=self._order.__getitem__),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RetrievalIndex":
        index = cls()
        for raw in data.get("entries", []):
            index._put(IndexEntry(
                id=raw["id"],
                tokens=frozenset(raw.get("tokens", [])),
                metadata=dict(raw.get("metadata", {})),
            ))
        index.set_order(data.get("order", []))
        return index
