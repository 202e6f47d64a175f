"""
Veriloop LiteLLM Client - Completion provider powered by litellm

Supports every provider litellm routes to through a single client:
- OpenAI (GPT-4o, o-series)
- Anthropic (Claude)
- Azure OpenAI
- Google Gemini
- Ollama (local models)
- DashScope (OpenAI-compatible mode)
"""

import json
import logging
import os
from typing import Any, AsyncIterator, Dict, List, Optional

from ..constants import UNPARSED_ARGUMENTS_KEY
from .base import (
    BaseLLMClient,
    LLMConfig,
    LLMResponse,
    StreamChunk,
    ToolCall,
    Usage,
    StopReason,
)

logger = logging.getLogger(__name__)

# provider: (litellm model prefix, env var holding the API key)
_PROVIDERS: Dict[str, tuple] = {
    "openai": ("", "OPENAI_API_KEY"),
    "anthropic": ("anthropic/", "ANTHROPIC_API_KEY"),
    "azure": ("azure/", "AZURE_OPENAI_API_KEY"),
    "gemini": ("gemini/", "GOOGLE_API_KEY"),
    "ollama": ("ollama/", None),
    "dashscope": ("openai/", "DASHSCOPE_API_KEY"),
}

_FINISH_REASONS: Dict[str, StopReason] = {
    "stop": StopReason.END_TURN,
    "end_turn": StopReason.END_TURN,
    "length": StopReason.MAX_TOKENS,
    "max_tokens": StopReason.MAX_TOKENS,
    "tool_calls": StopReason.TOOL_USE,
    "tool_use": StopReason.TOOL_USE,
    "function_call": StopReason.TOOL_USE,
    "content_filter": StopReason.CONTENT_FILTER,
    "stop_sequence": StopReason.STOP_SEQUENCE,
}


def build_litellm_model_string(provider: str, model: str) -> str:
    """Map provider + model to the prefixed model string litellm routes on.

    Unknown providers and OpenAI pass the model through unchanged.
    """
    prefix = _PROVIDERS.get(provider.lower(), ("", None))[0]
    if prefix and model.startswith(prefix):
        return model
    return prefix + model


def map_finish_reason(finish_reason: Optional[str]) -> StopReason:
    if finish_reason is None:
        return StopReason.END_TURN
    return _FINISH_REASONS.get(finish_reason, StopReason.END_TURN)


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    """Decode streamed tool arguments; malformed JSON is kept for the gateway to reject."""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {UNPARSED_ARGUMENTS_KEY: raw}
    return parsed if isinstance(parsed, dict) else {"value": parsed}


def _to_usage(raw: Any) -> Optional[Usage]:
    if not raw:
        return None
    return Usage(
        prompt_tokens=getattr(raw, "prompt_tokens", 0) or 0,
        completion_tokens=getattr(raw, "completion_tokens", 0) or 0,
        total_tokens=getattr(raw, "total_tokens", 0) or 0,
    )


class _ToolCallAssembler:
    """Collects tool-call fragments from stream deltas, keyed by their index."""

    def __init__(self):
        self._slots: Dict[int, Dict[str, str]] = {}

    def __bool__(self) -> bool:
        return bool(self._slots)

    def feed(self, fragments: List[Any]) -> None:
        for fragment in fragments:
            slot = self._slots.setdefault(fragment.index, {"id": "", "name": "", "arguments": ""})
            slot["id"] = fragment.id or slot["id"]
            function = fragment.function
            if function is None:
                continue
            slot["name"] = function.name or slot["name"]
            slot["arguments"] += function.arguments or ""

    def build(self) -> List[ToolCall]:
        return [
            ToolCall(id=s["id"], name=s["name"], arguments=_parse_arguments(s["arguments"]))
            for _, s in sorted(self._slots.items())
        ]


class LiteLLMClient(BaseLLMClient):
    """
    Completion provider client that delegates to litellm.

    Provider errors (``litellm.AuthenticationError``, ``RateLimitError``,
    ``APIConnectionError`` ...) are raised as-is.

    Example:
        from veriloop.llm import LiteLLMClient, LLMConfig

        client = LiteLLMClient(LLMConfig(model="claude-3-5-sonnet"), provider_name="anthropic")
        async for chunk in client.stream_completion([{"role": "user", "content": "Hi"}]):
            ...
    """

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        provider_name: str = "openai",
        **kwargs,
    ):
        if config is None:
            if not kwargs.get("model"):
                raise ValueError("LiteLLMClient needs a model")
            config, kwargs = LLMConfig(**kwargs), {}
        super().__init__(config, **kwargs)

        self.provider = provider_name.lower()
        self.model_string = build_litellm_model_string(self.provider, self.config.model)

        # Connection settings forwarded on every call
        self._route: Dict[str, Any] = {"timeout": self.config.timeout}
        if self.config.base_url:
            self._route["api_base"] = self.config.base_url
        api_key = self._resolve_api_key()
        if api_key:
            self._route["api_key"] = api_key

        logger.info(f"[LiteLLM] client ready: provider={self.provider}, model={self.model_string}")

    def _resolve_api_key(self) -> Optional[str]:
        """Explicit config wins over the provider's env var."""
        if self.config.api_key:
            return self.config.api_key
        env_var = _PROVIDERS.get(self.provider, ("", None))[1]
        return os.environ.get(env_var) if env_var else None

    def _request(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
        overrides: Dict[str, Any],
        stream: bool = False,
    ) -> Dict[str, Any]:
        request = dict(self.config.extra)
        request.update(self._route)
        request.update(
            model=overrides.get("model") or self.model_string,
            messages=messages,
            temperature=overrides.get("temperature", self.config.temperature),
            max_tokens=overrides.get("max_tokens", self.config.max_tokens),
        )
        if tools:
            request.update(tools=tools, tool_choice=overrides.get("tool_choice", "auto"))
        if "stop" in overrides:
            request["stop"] = overrides["stop"]
        if stream:
            request.update(stream=True, stream_options={"include_usage": True})

        logger.info(
            f"[LiteLLM] {'stream' if stream else 'call'} model={request['model']} "
            f"tools={len(tools or [])} messages={len(messages)}"
        )
        return request

    async def _call_api(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        **kwargs,
    ) -> LLMResponse:
        import litellm

        response = await litellm.acompletion(**self._request(messages, tools, kwargs))
        choice = response.choices[0]

        calls = [
            ToolCall(id=tc.id, name=tc.function.name, arguments=_parse_arguments(tc.function.arguments))
            for tc in choice.message.tool_calls or []
        ]
        return LLMResponse(
            content=choice.message.content or "",
            tool_calls=calls or None,
            stop_reason=map_finish_reason(choice.finish_reason),
            usage=_to_usage(getattr(response, "usage", None)),
            model=getattr(response, "model", None) or self.config.model,
        )

    async def _stream_api(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        **kwargs,
    ) -> AsyncIterator[StreamChunk]:
        import litellm

        stream = await litellm.acompletion(**self._request(messages, tools, kwargs, stream=True))
        assembler = _ToolCallAssembler()

        async for event in stream:
            if not event.choices:
                # Trailing event may carry only usage
                usage = _to_usage(getattr(event, "usage", None))
                if usage is not None:
                    yield StreamChunk(is_final=True, usage=usage)
                continue

            choice = event.choices[0]
            if choice.delta.tool_calls:
                assembler.feed(choice.delta.tool_calls)

            if choice.finish_reason is None:
                yield StreamChunk(content=choice.delta.content or "")
                continue

            logger.debug(f"[LiteLLM] stream finished: {choice.finish_reason}")
            yield StreamChunk(
                content=choice.delta.content or "",
                tool_calls=assembler.build() if assembler else None,
                is_final=True,
                stop_reason=map_finish_reason(choice.finish_reason),
            )
