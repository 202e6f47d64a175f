"""Tests for the LLM client base class and the litellm adapter"""

from types import SimpleNamespace

import litellm
import pytest

from veriloop.constants import UNPARSED_ARGUMENTS_KEY
from veriloop.llm.base import (
    BaseLLMClient,
    LLMConfig,
    LLMResponse,
    StopReason,
    StreamChunk,
    ToolCall,
)
from veriloop.llm.litellm_client import (
    LiteLLMClient,
    _parse_arguments,
    build_litellm_model_string,
    map_finish_reason,
)


class StubLLMClient(BaseLLMClient):
    provider = "stub"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = []

    async def _call_api(self, messages, tools=None, **kwargs):
        self.calls.append({"messages": messages, "tools": tools, "kwargs": kwargs})
        return LLMResponse(content="ok")

    async def _stream_api(self, messages, tools=None, **kwargs):
        self.calls.append({"messages": messages, "tools": tools, "kwargs": kwargs})
        for piece in ("Oslo ", "is ", "sunny"):
            yield StreamChunk(content=piece)
        yield StreamChunk(is_final=True, stop_reason=StopReason.END_TURN)


# =========================================================================
# BaseLLMClient
# =========================================================================


class TestBaseClient:

    def test_kwargs_build_config(self):
        client = StubLLMClient(model="small", temperature=0.1)
        assert client.config.model == "small"
        assert client.config.temperature == 0.1

    def test_kwargs_override_config(self):
        client = StubLLMClient(LLMConfig(model="small"), max_tokens=100, unknown="x")
        assert client.config.max_tokens == 100
        assert not hasattr(client.config, "unknown")

    @pytest.mark.asyncio
    async def test_chat_completion_merges_config(self):
        client = StubLLMClient()
        await client.chat_completion(
            [{"role": "user", "content": "hi"}],
            tools=[],
            config={"max_tokens": 50},
            temperature=0.0,
        )

        call = client.calls[0]
        assert call["tools"] is None
        assert call["kwargs"] == {"temperature": 0.0, "max_tokens": 50}

    @pytest.mark.asyncio
    async def test_stream_accumulates_content(self):
        client = StubLLMClient()
        chunks = [c async for c in client.stream_completion([{"role": "user", "content": "hi"}])]

        assert [c.accumulated_content for c in chunks] == [
            "Oslo ", "Oslo is ", "Oslo is sunny", "Oslo is sunny",
        ]
        assert chunks[-1].is_final is True

    @pytest.mark.asyncio
    async def test_async_context_manager(self):
        async with StubLLMClient() as client:
            assert (await client.chat_completion([])).content == "ok"


class TestResponseTypes:

    def test_assistant_message_with_tool_calls(self):
        response = LLMResponse(
            content="",
            tool_calls=[ToolCall(id="c1", name="get_forecast", arguments={"city": "Oslo"})],
            stop_reason=StopReason.TOOL_USE,
        )

        assert response.has_tool_calls is True
        assert response.to_assistant_message() == {
            "role": "assistant",
            "content": None,
            "tool_calls": [{
                "id": "c1",
                "type": "function",
                "function": {"name": "get_forecast", "arguments": '{"city": "Oslo"}'},
            }],
        }

    def test_plain_assistant_message(self):
        response = LLMResponse(content="hello", tool_calls=[])
        assert response.has_tool_calls is False
        assert response.to_assistant_message() == {"role": "assistant", "content": "hello"}

    def test_to_dict(self):
        assert LLMResponse(content="x").to_dict()["stop_reason"] == "end_turn"
        assert LLMConfig(model="m", temperature=0.2, max_tokens=10).to_dict() == {
            "model": "m", "temperature": 0.2, "max_tokens": 10,
        }


# =========================================================================
# litellm adapter
# =========================================================================


class TestModelString:

    @pytest.mark.parametrize("provider, model, expected", [
        ("openai", "gpt-4o", "gpt-4o"),
        ("anthropic", "claude-3-5-sonnet", "anthropic/claude-3-5-sonnet"),
        ("Anthropic", "anthropic/claude-3-5-sonnet", "anthropic/claude-3-5-sonnet"),
        ("dashscope", "qwen-max", "openai/qwen-max"),
        ("ollama", "llama3", "ollama/llama3"),
        ("somethingelse", "model-x", "model-x"),
    ])
    def test_prefixes(self, provider, model, expected):
        assert build_litellm_model_string(provider, model) == expected


class TestParseArguments:

    def test_json_object(self):
        assert _parse_arguments('{"city": "Oslo"}') == {"city": "Oslo"}

    def test_empty(self):
        assert _parse_arguments("") == {}
        assert _parse_arguments(None) == {}

    def test_dict_passthrough(self):
        assert _parse_arguments({"a": 1}) == {"a": 1}

    def test_malformed_json_is_preserved(self):
        assert _parse_arguments('{"city": ') == {UNPARSED_ARGUMENTS_KEY: '{"city": '}

    def test_non_object_is_wrapped(self):
        assert _parse_arguments("[1, 2]") == {"value": [1, 2]}


def _completion(content=None, tool_calls=None, finish_reason="stop"):
    return SimpleNamespace(
        choices=[SimpleNamespace(
            message=SimpleNamespace(content=content, tool_calls=tool_calls),
            finish_reason=finish_reason,
        )],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        model="gpt-4o",
    )


def _delta_chunk(content=None, tool_calls=None, finish_reason=None):
    return SimpleNamespace(choices=[SimpleNamespace(
        delta=SimpleNamespace(content=content, tool_calls=tool_calls),
        finish_reason=finish_reason,
    )])


def _tool_delta(index, id=None, name=None, arguments=None):
    return SimpleNamespace(
        index=index,
        id=id,
        function=SimpleNamespace(name=name, arguments=arguments),
    )


class TestLiteLLMClient:

    def test_requires_model(self):
        with pytest.raises(ValueError):
            LiteLLMClient()

    def test_api_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "env-key")
        client = LiteLLMClient(provider_name="anthropic", model="claude-3-5-sonnet")
        assert client._route["api_key"] == "env-key"

    def test_explicit_key_wins(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "env-key")
        client = LiteLLMClient(LLMConfig(model="gpt-4o", api_key="explicit"))
        assert client._route["api_key"] == "explicit"

    @pytest.mark.asyncio
    async def test_chat_completion(self, monkeypatch):
        captured = {}

        async def fake_acompletion(**params):
            captured.update(params)
            tool_call = SimpleNamespace(
                id="c1",
                function=SimpleNamespace(name="get_forecast", arguments='{"city": "Oslo"}'),
            )
            return _completion(tool_calls=[tool_call], finish_reason="tool_calls")

        monkeypatch.setattr(litellm, "acompletion", fake_acompletion)
        client = LiteLLMClient(LLMConfig(model="claude-3-5-sonnet", api_key="k"), provider_name="anthropic")
        tools = [{"type": "function", "function": {"name": "get_forecast"}}]

        response = await client.chat_completion([{"role": "user", "content": "hi"}], tools=tools)

        assert captured["model"] == "anthropic/claude-3-5-sonnet"
        assert captured["tool_choice"] == "auto"
        assert captured["api_key"] == "k"
        assert response.stop_reason == StopReason.TOOL_USE
        assert response.tool_calls[0].arguments == {"city": "Oslo"}
        assert response.usage.total_tokens == 15
        assert response.content == ""

    @pytest.mark.asyncio
    async def test_stream_assembles_tool_call_fragments(self, monkeypatch):
        async def stream():
            yield _delta_chunk(content="Let me check. ")
            yield _delta_chunk(tool_calls=[_tool_delta(0, id="c1", name="get_forecast", arguments='{"ci')])
            yield _delta_chunk(tool_calls=[_tool_delta(0, arguments='ty": "Oslo"}')])
            yield _delta_chunk(finish_reason="tool_calls")
            yield SimpleNamespace(
                choices=[],
                usage=SimpleNamespace(prompt_tokens=3, completion_tokens=2, total_tokens=5),
            )

        async def fake_acompletion(**params):
            assert params["stream"] is True
            return stream()

        monkeypatch.setattr(litellm, "acompletion", fake_acompletion)
        client = LiteLLMClient(LLMConfig(model="gpt-4o", api_key="k"))

        chunks = [c async for c in client.stream_completion([{"role": "user", "content": "hi"}])]
        final = [c for c in chunks if c.tool_calls]

        assert chunks[0].content == "Let me check. "
        assert len(final) == 1
        assert final[0].stop_reason == StopReason.TOOL_USE
        assert final[0].tool_calls[0].name == "get_forecast"
        assert final[0].tool_calls[0].arguments == {"city": "Oslo"}
        assert chunks[-1].usage.total_tokens == 5

    @pytest.mark.asyncio
    async def test_provider_errors_propagate(self, monkeypatch):
        async def fake_acompletion(**params):
            raise RuntimeError("provider down")

        monkeypatch.setattr(litellm, "acompletion", fake_acompletion)
        client = LiteLLMClient(LLMConfig(model="gpt-4o", api_key="k"))

        with pytest.raises(RuntimeError, match="provider down"):
            await client.chat_completion([{"role": "user", "content": "hi"}])

    def test_unknown_finish_reason(self):
        assert map_finish_reason("weird") == StopReason.END_TURN
        assert map_finish_reason("length") == StopReason.MAX_TOKENS
