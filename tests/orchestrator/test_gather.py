"""Tests for veriloop.orchestrator.gather"""

import pytest

from veriloop.models import EvidenceKind, Message
from veriloop.orchestrator.gather import (
    THREAD_REFERENCE,
    EvidenceGatherer,
    infer_kind,
    overlap_score,
    tokenize,
)
from veriloop.orchestrator.loop_config import LoopConfig


class StaticLookup:
    def __init__(self, hits):
        self.hits = hits

    async def search(self, query):
        return self.hits


class BrokenLookup:
    async def search(self, query):
        raise TimeoutError("lookup timed out")


class WrongTypeLookup:
    async def search(self, query):
        return "not a list"


@pytest.fixture
def config():
    return LoopConfig(max_history_snippets=2, max_excerpt_chars=20, max_lookup_results=2)


class TestTokenize:

    def test_drops_stopwords_and_short_words(self):
        assert tokenize("What is the weather in Oslo?") == {"weather", "oslo"}

    def test_case_folded(self):
        assert tokenize("OSLO Oslo oslo") == {"oslo"}

    def test_overlap_score(self):
        assert overlap_score({"oslo", "weather"}, "Oslo weather report") == 2
        assert overlap_score(set(), "anything") == 0


class TestInferKind:

    def test_explicit_kind(self):
        assert infer_kind({"reference": "x", "kind": "tool"}) == EvidenceKind.TOOL

    def test_unknown_kind_falls_back(self):
        assert infer_kind({"reference": "https://x.example", "kind": "bogus"}) == EvidenceKind.WEB

    def test_inferred(self):
        assert infer_kind({"reference": "https://x.example"}) == EvidenceKind.WEB
        assert infer_kind({"reference": "web:forecast"}) == EvidenceKind.WEB
        assert infer_kind({"reference": "docs/notes.md"}) == EvidenceKind.FILE


class TestRelevantHistory:

    def test_keeps_best_matches_in_original_order(self, config):
        gatherer = EvidenceGatherer(config)
        history = [
            Message.user("Oslo weather yesterday"),
            Message.assistant("Unrelated chatter"),
            Message.user("Oslo weather forecast tomorrow"),
            Message.assistant("Oslo is in Norway"),
        ]
        snippets = gatherer.relevant_history("Oslo weather forecast", history)
        assert [s.content for s in snippets] == [
            "Oslo weather yest...",
            "Oslo weather fore...",
        ]

    def test_no_overlap(self, config):
        gatherer = EvidenceGatherer(config)
        assert gatherer.relevant_history("Oslo", [Message.user("Bergen rain")]) == []


class TestGather:

    @pytest.mark.asyncio
    async def test_thread_evidence_when_history_is_relevant(self, config):
        gatherer = EvidenceGatherer(config)
        result = await gatherer.gather("Oslo weather", [Message.user("Oslo weather is nice")])
        assert len(result.evidence) == 1
        assert result.evidence[0].kind == EvidenceKind.THREAD
        assert result.evidence[0].reference == THREAD_REFERENCE
        assert len(result.history_snippets) == 1

    @pytest.mark.asyncio
    async def test_knowledge_hits_become_evidence(self, config):
        lookup = StaticLookup([
            {"reference": "https://yr.no", "content": "Sunny all week in Oslo and Bergen", "title": "Yr"},
            {"content": "no reference"},
            {"reference": "notes.md", "content": "Pack an umbrella"},
            {"reference": "extra.md", "content": "Capped by max_lookup_results"},
        ])
        gatherer = EvidenceGatherer(config, knowledge=[lookup])
        result = await gatherer.gather("weather", [])

        assert [e.reference for e in result.evidence] == ["https://yr.no"]
        assert result.evidence[0].excerpt == "Sunny all week in..."
        assert result.evidence[0].title == "Yr"

    @pytest.mark.asyncio
    async def test_preferences_are_not_evidence(self, config):
        gatherer = EvidenceGatherer(
            config,
            preferences=[StaticLookup([{"reference": "pref", "content": "Prefers Celsius"}])],
        )
        result = await gatherer.gather("weather", [])
        assert result.evidence == ()
        assert result.preferences == ["Prefers Celsius"]

    @pytest.mark.asyncio
    async def test_lookup_errors_are_recorded(self, config):
        gatherer = EvidenceGatherer(
            config,
            knowledge=[BrokenLookup(), WrongTypeLookup(), StaticLookup([{"reference": "a.md", "content": "ok"}])],
        )
        result = await gatherer.gather("weather", [])
        assert [e.reference for e in result.evidence] == ["a.md"]
        assert len(result.errors) == 1
        assert "lookup timed out" in result.errors[0]
