"""Tests for the reply retrieval engine and snippet store."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from inbox_sync.core.config import ReplySettings
from inbox_sync.core.models import ContextSnippet, Message
from inbox_sync.intelligence import LLMError, ReplyRetrievalEngine, load_snippets
from inbox_sync.intelligence.reply import rule_based_reply, similarity
from inbox_sync.storage import JsonSnippetStore

BOOKING_LINK = "https://cal.com/test"


class StubLLM:
    """Minimal LLM stand-in returning canned output."""

    def __init__(self, output: str | Exception) -> None:
        self._output = output
        self.prompts: list[str] = []

    @property
    def provider_id(self) -> str:
        return "stub:model"

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if isinstance(self._output, Exception):
            raise self._output
        return self._output


def _message(subject: str, body: str) -> Message:
    return Message(
        id="acct-1",
        account_id="acct",
        folder="INBOX",
        sender="recruiter@example.com",
        to=("me@example.com",),
        subject=subject,
        body=body,
        html=None,
        date=datetime(2026, 10, 1, tzinfo=UTC),
        protocol_sequence_id=1,
    )


def _snippets() -> list[ContextSnippet]:
    return [
        ContextSnippet(id="a", content="alpha beta"),
        ContextSnippet(id="b", content="gamma delta"),
        ContextSnippet(id="c", content="alpha gamma"),
        ContextSnippet(id="d", content="epsilon"),
    ]


def test_similarity_is_overlap_over_larger_set() -> None:
    assert similarity("a b c d", "a b") == pytest.approx(0.5)
    assert similarity("A a B", "a b") == pytest.approx(1.0)
    assert similarity("", "") == 0.0
    assert similarity("word", "") == 0.0


def test_score_covers_every_snippet_in_order() -> None:
    engine = ReplyRetrievalEngine(_snippets())
    scores = engine.score(_message("alpha", "gamma"))

    assert [snippet.id for snippet, _ in scores] == ["a", "b", "c", "d"]
    assert [value for _, value in scores] == pytest.approx([0.5, 0.5, 1.0, 0.0])


def test_retrieve_returns_top_three_with_stable_ties() -> None:
    engine = ReplyRetrievalEngine(_snippets())
    message = _message("alpha", "gamma")

    first = engine.retrieve(message)
    second = engine.retrieve(message)

    assert [snippet.id for snippet in first] == ["c", "a", "b"]
    assert first == second


def test_retrieve_with_no_overlap_keeps_insertion_order() -> None:
    engine = ReplyRetrievalEngine(_snippets())
    selected = engine.retrieve(_message("zeta", "eta"))
    assert [snippet.id for snippet in selected] == ["a", "b", "c"]


def test_suggest_reply_uses_llm_output() -> None:
    llm = StubLLM("  Happy to talk on Monday.  ")
    engine = ReplyRetrievalEngine(_snippets(), llm_client=llm, booking_link=BOOKING_LINK)

    suggestion = engine.suggest_reply(_message("alpha", "gamma"))

    assert suggestion.reply == "Happy to talk on Monday."
    assert suggestion.provider == "stub:model"
    assert suggestion.used_fallback is False
    assert suggestion.confidence == pytest.approx(0.85)
    assert "alpha gamma" in llm.prompts[0]


@pytest.mark.parametrize("output", [LLMError("offline"), RuntimeError("boom"), "   "])
def test_suggest_reply_falls_back_when_llm_fails(output: str | Exception) -> None:
    engine = ReplyRetrievalEngine(
        _snippets(), llm_client=StubLLM(output), booking_link=BOOKING_LINK
    )

    suggestion = engine.suggest_reply(_message("Interview next week", "Are you free?"))

    assert suggestion.used_fallback is True
    assert suggestion.provider == "deterministic"
    assert suggestion.confidence == pytest.approx(0.5)
    assert BOOKING_LINK in suggestion.reply


def test_suggest_reply_without_snippets_still_answers() -> None:
    engine = ReplyRetrievalEngine([], booking_link=BOOKING_LINK)
    suggestion = engine.suggest_reply(_message("", ""))
    assert suggestion.reply
    assert suggestion.context == ()


@pytest.mark.parametrize(
    ("subject", "marker"),
    [
        ("Interview invitation", "available for an interview"),
        ("You have been shortlisted", "proceed with the next steps"),
        ("A new opportunity", "delighted to discuss"),
        ("Your technical background", "technical background"),
        ("Hello", "appreciate your interest"),
    ],
)
def test_rule_based_reply_picks_template_by_keyword(subject: str, marker: str) -> None:
    reply = rule_based_reply(_message(subject, ""), BOOKING_LINK)
    assert marker in reply
    assert BOOKING_LINK in reply


def test_add_snippet_appends_and_persists(tmp_path: Path) -> None:
    store = JsonSnippetStore(tmp_path / "context.json")
    engine = ReplyRetrievalEngine(_snippets(), store=store)

    engine.add_snippet("e", "portfolio link")

    assert engine.snippets[-1] == ContextSnippet(id="e", content="portfolio link")
    stored = json.loads((tmp_path / "context.json").read_text(encoding="utf-8"))
    assert [item["id"] for item in stored] == ["a", "b", "c", "d", "e"]


def test_load_snippets_resets_to_defaults_on_startup(tmp_path: Path) -> None:
    store = JsonSnippetStore(tmp_path / "context.json")
    store.save([ContextSnippet(id="custom", content="kept?")])

    snippets = load_snippets(store, ReplySettings(booking_link=BOOKING_LINK))

    ids = [snippet.id for snippet in snippets]
    assert "custom" not in ids
    assert ids[:2] == ["product_context", "meeting_link"]
    assert BOOKING_LINK in snippets[1].content
    assert [snippet.id for snippet in store.load()] == ids


def test_load_snippets_keeps_existing_store_when_reset_disabled(tmp_path: Path) -> None:
    store = JsonSnippetStore(tmp_path / "context.json")
    store.save([ContextSnippet(id="custom", content="kept")])

    snippets = load_snippets(store, ReplySettings(reset_on_startup=False))

    assert snippets == [ContextSnippet(id="custom", content="kept")]
