"""
Tests for the Gather-Act-Verify loop

Tests cover:
- Single-attempt release with citations
- Retry after a formatting error, with feedback in the retry prompt
- Graceful failure after the attempt budget
- Tool timeouts degrading a provider and the unavailable note
- Provider error propagation on run() and stream_message()
- Streaming never emits text from a failed draft
- Compaction and the phase callback
"""

import asyncio
from typing import Any, Dict, List

import pytest

from veriloop.llm.base import LLMResponse, StopReason, StreamChunk, ToolCall, Usage
from veriloop.models import Message, RequestContext
from veriloop.orchestrator import AuditLogger, LoopConfig, Orchestrator
from veriloop.orchestrator.context_compactor import SUMMARY_HEADER
from veriloop.orchestrator.verification import graceful_failure_message
from veriloop.streaming.models import EventType
from veriloop.tools.health import HealthStatus, ToolHealthTracker
from veriloop.tools.local import FunctionToolProvider
from veriloop.tools.registry import ToolRegistry


# =============================================================================
# Mock Classes
# =============================================================================

class MockLLMClient:
    """Scripted completion provider.

    Each script entry is one streamed turn: a string is streamed as text, a
    list of ToolCall is returned as the final chunk's tool calls, and an
    exception instance is raised.
    """

    def __init__(self, script: List[Any], repeat_last: bool = False):
        self.script = list(script)
        self.repeat_last = repeat_last
        self.calls: List[Dict[str, Any]] = []
        self.summary_calls: List[Dict[str, Any]] = []

    def _next(self):
        if len(self.script) > 1 or not self.repeat_last:
            return self.script.pop(0)
        return self.script[0]

    async def stream_completion(self, messages, tools=None, config=None):
        self.calls.append({"messages": [dict(m) for m in messages], "tools": tools})
        turn = self._next()
        if isinstance(turn, BaseException):
            raise turn
        if isinstance(turn, list):
            yield StreamChunk(
                tool_calls=turn,
                is_final=True,
                stop_reason=StopReason.TOOL_USE,
                usage=Usage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
            )
            return
        half = len(turn) // 2
        yield StreamChunk(content=turn[:half])
        yield StreamChunk(content=turn[half:])
        yield StreamChunk(
            is_final=True,
            stop_reason=StopReason.END_TURN,
            usage=Usage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        )

    async def chat_completion(self, messages, tools=None, config=None):
        self.summary_calls.append({"messages": messages, "config": config})
        return LLMResponse(content="The user likes short answers.")


class MockKnowledge:
    def __init__(self, hits: List[Dict[str, Any]]):
        self.hits = hits
        self.queries: List[str] = []

    async def search(self, query: str) -> List[Dict[str, Any]]:
        self.queries.append(query)
        return list(self.hits)


class FailingKnowledge:
    async def search(self, query: str) -> List[Dict[str, Any]]:
        raise ConnectionError("knowledge service down")


FORECAST_HIT = {
    "reference": "web:forecast",
    "content": "Oslo forecast: sunny, 18 degrees.",
    "title": "Oslo forecast",
}


def _forecast_call(call_id: str = "call_1") -> List[ToolCall]:
    return [ToolCall(id=call_id, name="get_forecast", arguments={"city": "Oslo"})]


@pytest.fixture
def audit_events():
    return []


@pytest.fixture
def audit(audit_events):
    return AuditLogger(sinks=[audit_events.append])


async def _collect(orchestrator, message, context=None):
    events = []
    async for event in orchestrator.stream_message(message, context):
        events.append(event)
    return events


# =============================================================================
# Release on first attempt
# =============================================================================


class TestFirstAttemptRelease:

    @pytest.mark.asyncio
    async def test_weather_answer_with_citation(self, audit):
        llm = MockLLMClient(["It is sunny [1]."])
        orchestrator = Orchestrator(llm, knowledge=[MockKnowledge([FORECAST_HIT])], audit=audit)

        response = await orchestrator.run("What is the weather?")

        assert response.verified is True
        assert response.attempt_count == 1
        assert response.content == "It is sunny [1]."
        assert len(response.sources) == 1
        assert response.sources[0].id == 1
        assert response.sources[0].title == "Oslo forecast"
        assert len(llm.calls) == 1

    @pytest.mark.asyncio
    async def test_system_prompt_lists_numbered_evidence(self):
        llm = MockLLMClient(["It is sunny [1]."])
        orchestrator = Orchestrator(llm, knowledge=[MockKnowledge([FORECAST_HIT])])

        await orchestrator.run("What is the weather?")

        system = llm.calls[0]["messages"][0]
        assert system["role"] == "system"
        assert "[1]" in system["content"]
        assert "Oslo forecast" in system["content"]

    @pytest.mark.asyncio
    async def test_history_is_sent_before_the_user_message(self):
        llm = MockLLMClient(["Oslo stays sunny tomorrow as well."])
        orchestrator = Orchestrator(llm)
        ctx = RequestContext(history=[
            Message.user("Is Oslo sunny today?"),
            Message.assistant("Yes, Oslo is sunny today."),
        ])

        await orchestrator.run("And is Oslo sunny tomorrow?", ctx)

        messages = llm.calls[0]["messages"]
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[-1]["content"] == "And is Oslo sunny tomorrow?"

    @pytest.mark.asyncio
    async def test_render_appends_sources_footer(self):
        llm = MockLLMClient(["It is sunny [1]."])
        orchestrator = Orchestrator(llm, knowledge=[MockKnowledge([FORECAST_HIT])])

        response = await orchestrator.run("What is the weather?")

        assert response.render() == "It is sunny [1].\n\n_Sources:_\n• [1] Oslo forecast"

    @pytest.mark.asyncio
    async def test_lookup_failure_degrades_to_no_evidence(self):
        llm = MockLLMClient(["I have no sources, but Oslo is usually mild in May."])
        orchestrator = Orchestrator(llm, knowledge=[FailingKnowledge()])

        response = await orchestrator.run("What is the weather in Oslo?")

        assert response.verified is True
        assert response.sources == []


# =============================================================================
# Retries
# =============================================================================


class TestRetry:

    @pytest.mark.asyncio
    async def test_bold_markup_is_retried(self, audit, audit_events):
        llm = MockLLMClient(["**Sunny** today in Oslo.", "*Sunny* today in Oslo."])
        orchestrator = Orchestrator(llm, audit=audit)

        response = await orchestrator.run("Weather in Oslo?")

        assert response.verified is True
        assert response.attempt_count == 2
        assert response.content == "*Sunny* today in Oslo."
        assert len(llm.calls) == 2

        verifications = [e for e in audit_events if e["event_type"] == "verification"]
        assert [v["passed"] for v in verifications] == [False, True]

    @pytest.mark.asyncio
    async def test_retry_prompt_names_the_failed_rule(self):
        llm = MockLLMClient(["**Sunny** today in Oslo.", "*Sunny* today in Oslo."])
        orchestrator = Orchestrator(llm)

        await orchestrator.run("Weather in Oslo?")

        retry_message = llm.calls[1]["messages"][-1]["content"]
        assert retry_message.startswith("Weather in Oslo?")
        assert "attempt 2/3" in retry_message
        assert "[no-illegal-bold-markup]" in retry_message
        assert "**Sunny** today in Oslo." in retry_message

    @pytest.mark.asyncio
    async def test_graceful_failure_after_budget(self, audit, audit_events):
        llm = MockLLMClient(["**bad** answer about Oslo."], repeat_last=True)
        orchestrator = Orchestrator(llm, knowledge=[MockKnowledge([FORECAST_HIT])], audit=audit)

        response = await orchestrator.run("Weather in Oslo?")

        assert len(llm.calls) == 3
        assert response.verified is False
        assert response.attempt_count == 3
        assert response.sources == []
        assert response.content == graceful_failure_message()

        complete = [e for e in audit_events if e["event_type"] == "request_complete"]
        assert complete[-1]["verified"] is False
        assert complete[-1]["attempt_count"] == 3

    @pytest.mark.asyncio
    async def test_custom_attempt_budget(self):
        llm = MockLLMClient([""], repeat_last=True)
        orchestrator = Orchestrator(llm, config=LoopConfig(max_attempts=1))

        response = await orchestrator.run("Weather in Oslo?")

        assert len(llm.calls) == 1
        assert response.verified is False
        assert response.attempt_count == 1

    @pytest.mark.asyncio
    async def test_gather_runs_every_attempt(self):
        knowledge = MockKnowledge([FORECAST_HIT])
        llm = MockLLMClient(["**Sunny** [1].", "*Sunny* in Oslo today [1]."])
        orchestrator = Orchestrator(llm, knowledge=[knowledge])

        await orchestrator.run("Weather in Oslo?")

        assert len(knowledge.queries) == 2


# =============================================================================
# Tools
# =============================================================================


def _weather_provider(behaviour):
    provider = FunctionToolProvider("weather")

    async def get_forecast(city: str) -> Dict[str, Any]:
        """Get the forecast for a city"""
        return await behaviour(city)

    provider.add(get_forecast)
    return provider


class TestTools:

    @pytest.mark.asyncio
    async def test_tool_result_is_fed_back(self):
        async def sunny(city):
            return {"city": city, "forecast": "sunny"}

        registry = ToolRegistry()
        registry.add_provider(_weather_provider(sunny))
        llm = MockLLMClient([_forecast_call(), "The forecast for Oslo is sunny."])
        orchestrator = Orchestrator(llm, registry=registry)

        response = await orchestrator.run("What is the forecast for Oslo?")

        assert response.verified is True
        assert response.content == "The forecast for Oslo is sunny."
        assert llm.calls[0]["tools"][0]["function"]["name"] == "get_forecast"

        second = llm.calls[1]["messages"]
        assert second[-2]["role"] == "assistant"
        assert second[-2]["tool_calls"][0]["function"]["name"] == "get_forecast"
        assert second[-1] == {
            "role": "tool",
            "tool_call_id": "call_1",
            "content": '{"city": "Oslo", "forecast": "sunny"}',
        }

    @pytest.mark.asyncio
    async def test_timeouts_mark_provider_unhealthy_and_add_note(self):
        async def hang(city):
            await asyncio.sleep(5)

        registry = ToolRegistry()
        registry.add_provider(_weather_provider(hang))
        tracker = ToolHealthTracker()
        llm = MockLLMClient([
            _forecast_call("c1"),
            _forecast_call("c2"),
            _forecast_call("c3"),
            "I could not reach the forecast service for Oslo right now.",
        ])
        orchestrator = Orchestrator(
            llm,
            registry=registry,
            tracker=tracker,
            config=LoopConfig(tool_execution_timeout=0.01, tool_max_retries=0),
        )

        response = await orchestrator.run("What is the forecast for Oslo?")

        assert tracker.get("weather").status == HealthStatus.UNHEALTHY
        assert response.verified is True
        assert response.content.startswith("I could not reach the forecast service")
        assert response.content.endswith(
            "_Note: weather is currently unavailable, so this answer may be incomplete._"
        )
        tool_message = llm.calls[1]["messages"][-1]
        assert tool_message["content"].startswith("[ERROR] ")

    @pytest.mark.asyncio
    async def test_unhealthy_provider_is_withdrawn_within_the_attempt(self):
        async def hang(city):
            await asyncio.sleep(5)

        registry = ToolRegistry()
        registry.add_provider(_weather_provider(hang))
        tracker = ToolHealthTracker()
        llm = MockLLMClient([
            _forecast_call("c1"),
            _forecast_call("c2"),
            _forecast_call("c3"),
            "I could not reach the forecast service for Oslo right now.",
        ])
        orchestrator = Orchestrator(
            llm,
            registry=registry,
            tracker=tracker,
            config=LoopConfig(tool_execution_timeout=0.01, tool_max_retries=0),
        )

        response = await orchestrator.run("What is the forecast for Oslo?")

        assert [bool(c["tools"]) for c in llm.calls] == [True, True, True, False]
        assert tracker.get("weather").consecutive_failures == 3
        assert response.content.startswith("I could not reach the forecast service")

    @pytest.mark.asyncio
    async def test_tool_retries_stop_when_provider_turns_unhealthy(self):
        attempts = []

        async def hang(city):
            attempts.append(city)
            await asyncio.sleep(5)

        registry = ToolRegistry()
        registry.add_provider(_weather_provider(hang))
        tracker = ToolHealthTracker()
        llm = MockLLMClient([
            _forecast_call("c1"),
            "I could not reach the forecast service for Oslo right now.",
        ])
        orchestrator = Orchestrator(
            llm,
            registry=registry,
            tracker=tracker,
            config=LoopConfig(tool_execution_timeout=0.01, tool_max_retries=5, tool_retry_backoff=0.0),
        )

        await orchestrator.run("What is the forecast for Oslo?")

        assert len(attempts) == 3
        assert tracker.get("weather").status == HealthStatus.UNHEALTHY
        assert llm.calls[1]["tools"] is None

    @pytest.mark.asyncio
    async def test_unhealthy_provider_is_not_offered(self):
        async def sunny(city):
            return "sunny"

        registry = ToolRegistry()
        registry.add_provider(_weather_provider(sunny))
        tracker = ToolHealthTracker()
        for _ in range(3):
            tracker.mark_failure("weather", "timed out")
        llm = MockLLMClient(["Forecast data for Oslo is not available right now."])
        orchestrator = Orchestrator(llm, registry=registry, tracker=tracker)

        response = await orchestrator.run("What is the forecast for Oslo?")

        assert llm.calls[0]["tools"] is None
        assert "temporarily unavailable: weather" in llm.calls[0]["messages"][0]["content"]
        assert response.content.endswith(
            "_Note: weather is currently unavailable, so this answer may be incomplete._"
        )

    @pytest.mark.asyncio
    async def test_unknown_tool_does_not_touch_health(self):
        async def sunny(city):
            return "sunny"

        registry = ToolRegistry()
        registry.add_provider(_weather_provider(sunny))
        tracker = ToolHealthTracker()
        llm = MockLLMClient([
            [ToolCall(id="x", name="delete_everything", arguments={})],
            "The forecast for Oslo is sunny.",
        ])
        orchestrator = Orchestrator(llm, registry=registry, tracker=tracker)

        response = await orchestrator.run("What is the forecast for Oslo?")

        assert response.verified is True
        assert tracker.get("weather").status == HealthStatus.HEALTHY
        assert llm.calls[1]["messages"][-1]["content"] == (
            "[ERROR] The delete_everything tool is not available."
        )

    @pytest.mark.asyncio
    async def test_tool_budget_forces_final_text_turn(self):
        async def sunny(city):
            return "sunny"

        registry = ToolRegistry()
        registry.add_provider(_weather_provider(sunny))
        llm = MockLLMClient([
            _forecast_call("c1"),
            _forecast_call("c2"),
            "The forecast for Oslo is sunny.",
        ])
        orchestrator = Orchestrator(llm, registry=registry, config=LoopConfig(max_tool_loops=2))

        response = await orchestrator.run("What is the forecast for Oslo?")

        assert response.verified is True
        assert len(llm.calls) == 3
        assert llm.calls[0]["tools"] is not None
        assert llm.calls[1]["tools"] is not None
        assert llm.calls[2]["tools"] is None


# =============================================================================
# Errors
# =============================================================================


class TestProviderErrors:

    @pytest.mark.asyncio
    async def test_run_propagates_provider_error(self):
        llm = MockLLMClient([RuntimeError("provider down")])
        orchestrator = Orchestrator(llm)

        with pytest.raises(RuntimeError, match="provider down"):
            await orchestrator.run("Weather in Oslo?")

    @pytest.mark.asyncio
    async def test_stream_yields_error_then_raises(self):
        llm = MockLLMClient([RuntimeError("provider down")])
        orchestrator = Orchestrator(llm)
        events = []

        with pytest.raises(RuntimeError):
            async for event in orchestrator.stream_message("Weather in Oslo?"):
                events.append(event)

        assert events[-1].type == EventType.ERROR
        assert events[-1].data["error_type"] == "RuntimeError"
        assert not any(e.is_message for e in events)


# =============================================================================
# Streaming
# =============================================================================


class TestStreaming:

    @pytest.mark.asyncio
    async def test_failed_draft_text_is_never_streamed(self):
        llm = MockLLMClient(["**Sunny** today in Oslo.", "*Sunny* today in Oslo."])
        orchestrator = Orchestrator(llm)

        events = await _collect(orchestrator, "Weather in Oslo?")

        chunks = [e.data["chunk"] for e in events if e.type == EventType.MESSAGE_CHUNK]
        assert chunks == ["*Sunny* today in Oslo."]
        assert all("**" not in c for c in chunks)

    @pytest.mark.asyncio
    async def test_event_order(self):
        llm = MockLLMClient(["It is sunny [1]."])
        orchestrator = Orchestrator(llm, knowledge=[MockKnowledge([FORECAST_HIT])])

        events = await _collect(orchestrator, "What is the weather?")
        types = [e.type for e in events]

        first_chunk = types.index(EventType.MESSAGE_CHUNK)
        assert types.index(EventType.VERIFICATION_RESULT) < first_chunk
        assert types[-1] == EventType.EXECUTION_END
        assert [e.sequence for e in events] == list(range(1, len(events) + 1))

        chunks = [e.data["chunk"] for e in events if e.type == EventType.MESSAGE_CHUNK]
        assert chunks[1].startswith("\n\n_Sources:_")

        final = events[-1].data["response"]
        assert final.verified is True
        assert events[-1].to_dict()["data"]["response"]["attempt_count"] == 1


# =============================================================================
# Compaction and callbacks
# =============================================================================


class TestCompactionAndCallbacks:

    @pytest.mark.asyncio
    async def test_long_history_is_compacted_once(self, audit, audit_events):
        llm = MockLLMClient(["**bad** Oslo.", "Short answers about Oslo, as you prefer."])
        history = [Message.user("x" * 100) if i % 2 == 0 else Message.assistant("y" * 100) for i in range(6)]
        orchestrator = Orchestrator(
            llm,
            audit=audit,
            config=LoopConfig(context_token_limit=100, compaction_threshold=0.8, keep_last_n=2),
        )

        response = await orchestrator.run("Tell me about Oslo", RequestContext(history=history))

        assert response.verified is True
        assert len(llm.summary_calls) == 1
        messages = llm.calls[0]["messages"]
        assert messages[1]["content"].startswith(SUMMARY_HEADER)
        assert len(messages) == 1 + 3 + 1

        compactions = [e for e in audit_events if e["event_type"] == "compaction"]
        assert len(compactions) == 1
        assert compactions[0]["applied"] is True

    @pytest.mark.asyncio
    async def test_summarizer_failure_keeps_full_history(self):
        async def broken(messages):
            raise RuntimeError("summarizer down")

        llm = MockLLMClient(["Oslo is the capital of Norway."])
        history = [Message.user("z" * 200) for _ in range(4)]
        orchestrator = Orchestrator(
            llm,
            summarizer=broken,
            config=LoopConfig(context_token_limit=100, keep_last_n=1),
        )

        response = await orchestrator.run("Tell me about Oslo", RequestContext(history=history))

        assert response.verified is True
        assert len(llm.calls[0]["messages"]) == 1 + 4 + 1

    @pytest.mark.asyncio
    async def test_phase_callback_sees_every_phase(self):
        phases = []

        async def on_phase(phase, data):
            phases.append(phase)

        llm = MockLLMClient(["It is sunny [1]."])
        orchestrator = Orchestrator(llm, knowledge=[MockKnowledge([FORECAST_HIT])])

        await orchestrator.run("What is the weather?", RequestContext(on_phase=on_phase))

        assert phases == ["gather", "act", "verify", "final"]

    @pytest.mark.asyncio
    async def test_failing_phase_callback_is_ignored(self):
        def on_phase(phase, data):
            raise ValueError("callback bug")

        llm = MockLLMClient(["It is sunny [1]."])
        orchestrator = Orchestrator(llm, knowledge=[MockKnowledge([FORECAST_HIT])])

        response = await orchestrator.run("What is the weather?", RequestContext(on_phase=on_phase))

        assert response.verified is True

    @pytest.mark.asyncio
    async def test_request_id_is_assigned(self, audit, audit_events):
        llm = MockLLMClient(["It is sunny [1]."])
        orchestrator = Orchestrator(llm, audit=audit)
        ctx = RequestContext()

        await orchestrator.run("What is the weather?", ctx)

        assert ctx.request_id
        assert all(e.get("request_id") == ctx.request_id for e in audit_events if "request_id" in e)
