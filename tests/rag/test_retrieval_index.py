"""
Unit tests for doc_sync.rag.index
"""

from __future__ import annotations

import pytest

from doc_sync.docs.generator import DocumentedNode
from doc_sync.rag.index import (
    TIER_EXACT, TIER_LABEL_CONTAINS, TIER_QUERY_CONTAINS, RetrievalIndex, tokenize,
)


def _doc(label: str, summary: str = "", node_id: str = None, **kw) -> DocumentedNode:
    return DocumentedNode(
        id=node_id or f"function:src/{label}.ts::{label}",
        label=label,
        type=kw.pop("type", "function"),
        file_path=kw.pop("file_path", f"src/{label}.ts"),
        start_line=1,
        summary=summary,
        description="",
        signature=f"function {label}()",
        **kw,
    )


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

class TestTokenize:

    def test_camel_snake_and_punctuation(self):
        assert tokenize("getUserById") == {"get", "user"}
        assert tokenize("fetch_from_db") == {"fetch", "from"}
        assert tokenize("src/services/UserService.ts") == {"src", "services", "user", "service"}

    def test_short_and_empty(self):
        assert tokenize("a b cd") == set()
        assert tokenize("") == set()


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------

class TestSearch:

    def test_exact_label_outranks_term_heavy_documents(self):
        index = RetrievalIndex()
        noise = [
            _doc(f"helper{i}", "handles user authentication login user session", f"function:n.ts::h{i}")
            for i in range(200)
        ]
        index.index_documents(noise + [_doc("login", "Entry point.")])
        hits = index.search("login")
        assert hits[0].name == "login"
        assert hits[0].tier == TIER_EXACT
        assert hits[0].score >= 100

    def test_name_tiers(self):
        assert RetrievalIndex.name_tier("getUser", "getuser") == TIER_EXACT
        assert RetrievalIndex.name_tier("getUserById", "getUser") == TIER_LABEL_CONTAINS
        assert RetrievalIndex.name_tier("login", "how does login work") == TIER_QUERY_CONTAINS
        # Labels of three characters or fewer never match by containment
        assert RetrievalIndex.name_tier("run", "how does run work") == 0
        assert RetrievalIndex.name_tier("", "x") == 0

    def test_rarer_terms_weigh_more(self):
        index = RetrievalIndex()
        index.index_documents([
            _doc("alpha", "common common payment"),
            _doc("beta", "common"),
            _doc("gamma", "common"),
        ])
        hits = index.search("payment common")
        assert hits[0].name == "alpha"

    def test_evidence_ignores_stopwords_and_ubiquitous_tokens(self):
        index = RetrievalIndex()
        index.index_documents([
            _doc("alpha", "the payment handler"),
            _doc("beta", "the refund handler"),
            _doc("gamma", "ledger"),
        ])
        assert not index.informative("the")
        assert not index.informative("function")
        assert index.informative("payment")

        hits = {h.name: h for h in index.search("the function for payment")}
        assert hits["alpha"].evidence == pytest.approx(index.idf("payment"))
        assert hits["beta"].evidence == 0
        assert hits["beta"].term_score > 0

    def test_single_document_tokens_stay_informative(self):
        index = RetrievalIndex()
        index.index_documents([_doc("alpha", "parses invoices")])
        assert index.informative("invoices")
        assert index.search("invoices")[0].evidence > 0

    def test_zero_scores_omitted(self):
        index = RetrievalIndex()
        index.index_documents([_doc("alpha", "parses invoices")])
        assert index.search("weather forecast") == []

    def test_ties_broken_by_graph_order(self):
        index = RetrievalIndex()
        a = _doc("first", "shared words", "function:z.ts::first")
        b = _doc("second", "shared words", "function:a.ts::second")
        index.index_documents([a, b])
        index.set_order([b.id, a.id])
        assert [h.id for h in index.search("shared")] == [b.id, a.id]
        index.set_order([a.id, b.id])
        assert [h.id for h in index.search("shared")] == [a.id, b.id]

    def test_top_k_and_blank_query(self):
        index = RetrievalIndex()
        index.index_documents([_doc(f"item{i}", "widget") for i in range(5)])
        assert len(index.search("widget", top_k=2)) == 2
        assert index.search("   ") == []
        assert index.search("widget", top_k=0) == []

    def test_hit_dict(self):
        index = RetrievalIndex()
        index.index_documents([_doc("login", "Signs a user in.")])
        data = index.search("login")[0].to_dict()
        assert data["name"] == "login"
        assert data["summary"] == "Signs a user in."
        assert data["filePath"] == "src/login.ts"
        assert data["startLine"] == 1


# ---------------------------------------------------------------------------
# Partial re-index
# ---------------------------------------------------------------------------

class TestPartialReindex:

    def test_reindexing_one_document_leaves_others(self):
        index = RetrievalIndex()
        index.index_documents([_doc("login", "old text"), _doc("logout", "signs out")])
        assert index.index_documents([_doc("login", "new wording")]) == 1
        assert len(index) == 2
        assert index.search("wording")[0].name == "login"
        assert index.search("old") == []
        assert index.search("signs")[0].name == "logout"

    def test_remove_updates_document_frequency(self):
        index = RetrievalIndex()
        index.index_documents([_doc("alpha", "token"), _doc("beta", "token"), _doc("gamma", "other")])
        before = index.idf("token")
        index.remove(["function:src/beta.ts::beta"])
        assert "function:src/beta.ts::beta" not in index
        assert index.idf("token") != before
        index.remove(["never-indexed"])
        assert len(index) == 2

    def test_copy_is_independent(self):
        index = RetrievalIndex()
        index.index_documents([_doc("alpha", "token")])
        clone = index.copy()
        clone.index_documents([_doc("beta", "token")])
        assert len(index) == 1
        assert len(clone) == 2

    def test_dict_round_trip_preserves_ranking(self):
        index = RetrievalIndex()
        docs = [_doc("alpha", "shared"), _doc("beta", "shared")]
        index.index_documents(docs)
        index.set_order([d.id for d in reversed(docs)])
        restored = RetrievalIndex.from_dict(index.to_dict())
        assert [h.id for h in restored.search("shared")] == [h.id for h in index.search("shared")]
        assert restored.idf("shared") == index.idf("shared")
