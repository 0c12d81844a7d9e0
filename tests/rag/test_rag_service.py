"""
Unit tests for doc_sync.rag.service

Covers the relevance floor, confidence tiers, question templates and the
isolation of failing or slow external sources.
"""

from __future__ import annotations

import threading
import time
from unittest.mock import MagicMock

import pytest

from doc_sync.docs.generator import DocumentedNode, Strategy
from doc_sync.rag.index import RetrievalIndex
from doc_sync.rag.service import (
    CONFIDENCE_HIGH, CONFIDENCE_LOW, CONFIDENCE_MEDIUM, CONFIDENCE_NONE, NO_ANSWER,
    RAGService, question_type,
)
from doc_sync.rag.sources import ExternalHit


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _doc(label, summary, path, **kw) -> DocumentedNode:
    return DocumentedNode(
        id=f"function:{path}::{label}",
        label=label,
        type="function",
        file_path=path,
        start_line=kw.pop("start_line", 3),
        summary=summary,
        description="",
        signature=f"function {label}()",
        **kw,
    )


def _service(**kw) -> RAGService:
    docs = [
        _doc("login", "Signs a user in with a password.", "src/auth/login.ts",
             dependencies=["checkPassword"], usage_examples=["login(user, pw);"]),
        _doc("checkPassword", "Compares a password hash.", "src/auth/hash.ts"),
        _doc("renderInvoice", "Formats an invoice as HTML.", "src/billing/invoice.ts"),
    ]
    index = RetrievalIndex()
    index.index_documents(docs)
    index.set_order([d.id for d in docs])
    return RAGService(index, {d.id: d for d in docs}, **kw)


class _Source:
    def __init__(self, name, behaviour, timeout=1.0):
        self.name = name
        self.timeout = timeout
        self.behaviour = behaviour

    def query(self, text, top_k):
        return self.behaviour(text, top_k)


# ---------------------------------------------------------------------------
# Question answering
# ---------------------------------------------------------------------------

class TestQuestionType:

    @pytest.mark.parametrize("question,kind", [
        ("Where is login defined?", "where"),
        ("what does checkPassword do", "what"),
        ("What's renderInvoice?", "what"),
        ("How does login work?", "how"),
        ("login password", "digest"),
        ("", "digest"),
    ])
    def test_classification(self, question, kind):
        assert question_type(question) == kind


class TestAnswerQuestion:

    def test_nothing_relevant_returns_no_answer(self):
        answer = _service().answer_question("weather forecast tomorrow")
        assert answer.answer == NO_ANSWER
        assert answer.relevant_node_ids == []
        assert answer.confidence == CONFIDENCE_NONE

    def test_exact_name_is_high_confidence(self):
        answer = _service().answer_question("login")
        assert answer.confidence == CONFIDENCE_HIGH
        assert answer.relevant_node_ids[0] == "function:src/auth/login.ts::login"

    def test_where_lists_locations(self):
        answer = _service().answer_question("Where is renderInvoice?")
        assert "src/billing/invoice.ts:3" in answer.answer
        assert answer.answer.startswith("Found in:")

    def test_what_uses_summary(self):
        answer = _service().answer_question("What does checkPassword do?")
        assert "Compares a password hash." in answer.answer

    def test_how_includes_dependencies_and_example(self):
        answer = _service().answer_question("How does login work?")
        assert "checkPassword" in answer.answer
        assert "login(user, pw);" in answer.answer
        assert answer.strategy == Strategy.ANALYSIS

    def test_digest(self):
        answer = _service().answer_question("password")
        assert answer.answer.startswith('Top matches for "password"')
        assert set(answer.relevant_node_ids) >= {
            "function:src/auth/login.ts::login", "function:src/auth/hash.ts::checkPassword",
        }

    def test_generator_only_used_when_requested(self):
        gen = MagicMock()
        gen.is_available.return_value = True
        gen.generate.return_value = "Phrased."
        service = _service(generator=gen)

        assert service.answer_question("login").strategy == Strategy.ANALYSIS
        gen.generate.assert_not_called()

        phrased = service.answer_question("login", use_generator=True)
        assert phrased.answer == "Phrased."
        assert phrased.strategy == Strategy.GENERATED

    def test_generator_failure_falls_back_to_template(self):
        gen = MagicMock()
        gen.is_available.return_value = True
        gen.generate.side_effect = RuntimeError("offline")
        answer = _service(generator=gen).answer_question("login", use_generator=True)
        assert answer.strategy == Strategy.ANALYSIS
        assert "login" in answer.answer

    def test_no_answer_never_calls_generator(self):
        gen = MagicMock()
        _service(generator=gen).answer_question("weather", use_generator=True)
        gen.generate.assert_not_called()


class TestConfidence:

    def test_tiers(self):
        service = RAGService(RetrievalIndex())
        assert service.confidence_for(130) == CONFIDENCE_HIGH
        assert service.confidence_for(30) == CONFIDENCE_HIGH
        assert service.confidence_for(5) == CONFIDENCE_MEDIUM
        assert service.confidence_for(1) == CONFIDENCE_LOW
        assert service.confidence_for(0.1) == CONFIDENCE_NONE

    def test_shared_template_words_are_not_an_answer(self):
        service = _service()
        # every document's signature contains "function"
        assert service.search("Which function handles the weather?")
        answer = service.answer_question("Which function handles the weather?")
        assert answer.answer == NO_ANSWER
        assert answer.confidence == CONFIDENCE_NONE
        assert answer.relevant_node_ids == []

    def test_term_only_match_is_below_high(self):
        answer = _service().answer_question("invoice html")
        assert answer.confidence in (CONFIDENCE_LOW, CONFIDENCE_MEDIUM)


# ---------------------------------------------------------------------------
# Federated search
# ---------------------------------------------------------------------------

class TestSearchWithExternal:

    def test_without_sources(self):
        result = _service().search_with_external("login")
        assert result.local[0].name == "login"
        assert result.external == []

    def test_failing_source_isolated(self):
        ok = _Source("ok", lambda text, k: [ExternalHit("remoteLogin", score=2.0)])

        def boom(text, k):
            raise ConnectionError("refused")

        bad = _Source("bad", boom)
        result = _service(sources=[bad, ok]).search_with_external("login")

        assert result.local[0].name == "login"
        by_name = {b.source: b for b in result.external}
        assert by_name["bad"].results == []
        assert "refused" in by_name["bad"].error
        assert [h.name for h in by_name["ok"].results] == ["remoteLogin"]
        assert by_name["ok"].error is None

    def test_slow_source_times_out_without_blocking(self):
        release = threading.Event()

        def slow(text, k):
            release.wait(timeout=5)
            return [ExternalHit("late")]

        fast = _Source("fast", lambda text, k: [ExternalHit("quick")])
        service = _service(sources=[_Source("slow", slow, timeout=0.2), fast])
        started = time.monotonic()
        result = service.search_with_external("login")
        elapsed = time.monotonic() - started
        release.set()

        assert elapsed < 2.0
        by_name = {b.source: b for b in result.external}
        assert by_name["slow"].results == []
        assert "timed out" in by_name["slow"].error
        assert [h.name for h in by_name["fast"].results] == ["quick"]

    def test_results_truncated_to_top_k(self):
        many = _Source("many", lambda text, k: [ExternalHit(f"h{i}") for i in range(20)])
        result = _service(sources=[many]).search_with_external("login", top_k=3)
        assert len(result.external[0].results) == 3

    def test_result_dict(self):
        src = _Source("s", lambda text, k: [ExternalHit("x", source_path="a.ts:1")])
        data = _service(sources=[src]).search_with_external("login").to_dict()
        assert data["local"][0]["name"] == "login"
        assert data["external"][0]["results"][0]["sourcePath"] == "a.ts:1"
