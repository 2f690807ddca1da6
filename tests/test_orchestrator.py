import math

import pytest

from conftest import FakeLLM, FakeRetriever, make_hit

from grounded_rag.answer.orchestrator import (
    CONTEXT_END,
    CONTEXT_START,
    INVALID_ANSWER,
    NO_EVIDENCE_ANSWER,
    GroundedAnswerService,
    build_system_prompt,
    build_user_prompt,
    select_chunks_by_budget,
    trim_for_prompt,
)
from grounded_rag.index.memory import InMemoryStore
from grounded_rag.index.schema import AnswerOutcome, Point
from grounded_rag.retrieve.retriever import Retriever
from grounded_rag.settings import RuntimeSettings

GOOD = "- Refunds are processed in 5 days. [D001|Refund Policy|c3]"
HITS = [
    make_hit(0.9, doc_id="001", section="Refund Policy", index=3),
    make_hit(0.5, doc_id="002", section="Shipping", index=0, text="Orders ship in 48 hours."),
]


def _service(hits, replies):
    llm = FakeLLM(replies=replies)
    return GroundedAnswerService(FakeRetriever(hits), llm), llm


def test_budget_keeps_first_chunk_only():
    hits = [make_hit(0.9 - i / 10, index=i, text="x" * 5000) for i in range(3)]
    picked = select_chunks_by_budget(hits, max_budget=8000, max_chunk_chars=10_000)
    assert [h.chunk_index for h in picked] == [0]


def test_budget_never_returns_zero_chunks():
    hits = [make_hit(0.9, text="x" * 5000)]
    assert len(select_chunks_by_budget(hits, max_budget=100, max_chunk_chars=10_000)) == 1


def test_budget_counts_trimmed_length():
    hits = [make_hit(0.9 - i / 10, index=i, text="x" * 5000) for i in range(3)]
    picked = select_chunks_by_budget(hits, max_budget=8000, max_chunk_chars=2000)
    assert len(picked) == 3


def test_trim_for_prompt():
    assert trim_for_prompt("  abc  ", 10) == "abc"
    assert trim_for_prompt("abcdef", 3) == "abc..."


def test_user_prompt_lists_citations_between_markers():
    prompt = build_user_prompt("How long do refunds take?", HITS, 1600)
    assert prompt.index(CONTEXT_START) < prompt.index("[D001|Refund Policy|c3]") < prompt.index(CONTEXT_END)
    assert "[D002|Shipping|c0]" in prompt
    assert prompt.rstrip().endswith("How long do refunds take?")


def test_system_prompt_variants():
    plain = build_system_prompt(is_ambiguous=False, stricter=False)
    assert "ambiguous" not in plain
    assert "Reinforced strict mode" not in plain
    assert "ambiguous" in build_system_prompt(is_ambiguous=True, stricter=False)
    assert "empty bullet list" in build_system_prompt(is_ambiguous=False, stricter=True)


def test_low_top1_is_no_evidence_without_generator_call():
    service, llm = _service([make_hit(0.9)], replies=[GOOD])
    result = service.ask("refunds?", RuntimeSettings(min_score=0.95))

    assert result.outcome == AnswerOutcome.NO_EVIDENCE
    assert result.answer_text == NO_EVIDENCE_ANSWER
    assert result.used_generator is False
    assert result.top1_score == 0.9
    assert result.reason == "top1 score below threshold"
    assert len(llm.chat_calls) == 0


def test_no_evidence_end_to_end_through_store():
    store = InMemoryStore()
    store.create_collection(2)
    store.upsert([Point(id=1, vector=[1.0, 0.0], payload={
        "doc_id": "001", "section_title": "Refund Policy", "chunk_id": "001_chunk_0000",
        "chunk_index": 0, "chunk_text": "Refunds are processed in 5 days.",
    })])
    llm = FakeLLM(replies=[GOOD], vectors={"refunds?": [0.9, math.sqrt(1 - 0.81)]})
    service = GroundedAnswerService(Retriever(llm, store), llm)

    result = service.ask("refunds?", RuntimeSettings(min_score=0.95))
    assert result.outcome == AnswerOutcome.NO_EVIDENCE
    assert abs(result.top1_score - 0.9) < 1e-4
    assert len(result.retrieved) == 1
    assert len(llm.chat_calls) == 0


def test_empty_retrieval_is_no_evidence():
    service, llm = _service([], replies=[GOOD])
    result = service.ask("refunds?", RuntimeSettings())
    assert result.outcome == AnswerOutcome.NO_EVIDENCE
    assert result.reason == "no chunks retrieved"
    assert result.retrieved == []
    assert len(llm.chat_calls) == 0


def test_valid_answer_on_first_attempt():
    service, llm = _service(HITS, replies=[GOOD])
    result = service.ask("How long do refunds take?", RuntimeSettings())

    assert result.outcome == AnswerOutcome.VALID
    assert result.used_generator is True
    assert result.is_valid_grounded_output is True
    assert result.answer_text == GOOD
    assert result.citations == ["[D001|Refund Policy|c3]"]
    assert result.attempts == 1
    assert result.gap_top1_top2 == pytest.approx(0.4)
    assert len(llm.chat_calls) == 1
    assert "Reinforced strict mode" not in llm.chat_calls[0]["system"]


def test_invalid_first_answer_is_retried_in_strict_mode():
    service, llm = _service(HITS, replies=["Refunds take 5 days.", GOOD])
    result = service.ask("How long do refunds take?", RuntimeSettings())

    assert result.outcome == AnswerOutcome.VALID
    assert result.attempts == 2
    assert len(llm.chat_calls) == 2
    assert "Reinforced strict mode" in llm.chat_calls[1]["system"]
    # same context both times
    assert llm.chat_calls[0]["user"] == llm.chat_calls[1]["user"]


def test_two_failures_end_invalid_with_diagnostics():
    service, llm = _service(HITS, replies=["Refunds take 5 days.", "- Nope. [D999|Unknown|c9]"])
    result = service.ask("How long do refunds take?", RuntimeSettings())

    assert result.outcome == AnswerOutcome.INVALID
    assert result.answer_text == INVALID_ANSWER
    assert result.used_generator is False
    assert result.is_valid_grounded_output is False
    assert result.reason.startswith("invalid citation")
    assert result.attempts == 2
    assert len(result.retrieved) == 2
    assert [c.chunk_id for c in result.context] == [h.chunk_id for h in HITS]
    assert len(llm.chat_calls) == 2


def test_ambiguous_retrieval_changes_prompt():
    hits = [make_hit(0.7, index=3), make_hit(0.69, doc_id="002", section="Shipping", index=0)]
    service, llm = _service(hits, replies=[GOOD])
    result = service.ask("refunds?", RuntimeSettings(min_gap=0.05))

    assert result.is_ambiguous is True
    assert result.outcome == AnswerOutcome.VALID
    assert "ambiguous" in llm.chat_calls[0]["system"]


def test_context_is_budgeted_before_generation():
    hits = [make_hit(0.9 - i / 10, index=i, text="x" * 5000) for i in range(3)]
    service, llm = _service(hits, replies=["- Fact. [D001|Refund Policy|c0]"])
    settings = RuntimeSettings(max_context_chars_budget=8000, max_chunk_chars_for_prompt=10_000)
    result = service.ask("q", settings)

    assert result.outcome == AnswerOutcome.VALID
    assert len(result.context) == 1
    assert "[D001|Refund Policy|c1]" not in llm.chat_calls[0]["user"]


def test_citation_to_retrieved_but_unbudgeted_chunk_is_invalid():
    hits = [make_hit(0.9 - i / 10, index=i, text="x" * 5000) for i in range(3)]
    reply = "- Fact. [D001|Refund Policy|c1]"
    service, _ = _service(hits, replies=[reply, reply])
    settings = RuntimeSettings(max_context_chars_budget=8000, max_chunk_chars_for_prompt=10_000)
    assert service.ask("q", settings).outcome == AnswerOutcome.INVALID
