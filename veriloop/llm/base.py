"""
Veriloop LLM Client Base - Base class and common types for completion providers

This module provides:
- BaseLLMClient: Abstract base class for completion-provider clients
- LLMConfig: Configuration dataclass
- LLMResponse: Standardized non-streaming response
- StreamChunk: One event of a streaming response (text delta, or the
  terminal chunk carrying tool calls, stop reason and usage)
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, AsyncIterator
from enum import Enum


class StopReason(str, Enum):
    """Reason why the LLM stopped generating"""
    END_TURN = "end_turn"           # Natural completion
    MAX_TOKENS = "max_tokens"       # Hit token limit
    STOP_SEQUENCE = "stop_sequence" # Hit stop sequence
    TOOL_USE = "tool_use"           # Model wants to use a tool
    CONTENT_FILTER = "content_filter"
    ERROR = "error"


@dataclass
class LLMConfig:
    """
    Configuration for LLM clients.

    Attributes:
        api_key: API key for the provider
        model: Model name (e.g., "gpt-4o", "claude-3-5-sonnet-20241022")
        base_url: Optional base URL override for API
        temperature: Sampling temperature (0.0 - 2.0)
        max_tokens: Maximum tokens in response
        timeout: Request timeout in seconds
    """
    api_key: Optional[str] = None
    model: str = "gpt-4o"
    base_url: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 4096
    timeout: int = 60

    # Extra provider-specific params forwarded verbatim
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }


@dataclass
class ToolCall:
    """A tool invocation requested by the LLM"""
    id: str
    name: str
    arguments: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "arguments": self.arguments,
        }


@dataclass
class Usage:
    """Token usage information"""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class LLMResponse:
    """
    Standardized LLM response format.

    Also produced by the orchestrator when it folds a finished stream back
    into a single turn.
    """
    content: str
    tool_calls: Optional[List[ToolCall]] = None
    stop_reason: StopReason = StopReason.END_TURN
    usage: Optional[Usage] = None
    model: Optional[str] = None

    @property
    def has_tool_calls(self) -> bool:
        return self.tool_calls is not None and len(self.tool_calls) > 0

    def to_assistant_message(self) -> Dict[str, Any]:
        """Convert to an OpenAI-format assistant message for the messages list."""
        msg: Dict[str, Any] = {"role": "assistant", "content": self.content or None}
        if self.tool_calls:
            msg["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {
                        "name": tc.name,
                        "arguments": json.dumps(tc.arguments),
                    },
                }
                for tc in self.tool_calls
            ]
        return msg

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "tool_calls": [tc.to_dict() for tc in self.tool_calls] if self.tool_calls else None,
            "stop_reason": self.stop_reason.value,
            "usage": self.usage.to_dict() if self.usage else None,
            "model": self.model,
        }


@dataclass
class StreamChunk:
    """
    A chunk from a streaming response.

    Text arrives as ``content`` deltas. The terminal chunk has
    ``is_final=True`` and carries the fully assembled ``tool_calls`` (if the
    model requested any), the ``stop_reason`` and, when the provider
    reports it, ``usage``.
    """
    content: str = ""
    tool_calls: Optional[List[ToolCall]] = None
    is_final: bool = False
    stop_reason: Optional[StopReason] = None
    usage: Optional[Usage] = None

    # Accumulated content (all chunks so far)
    accumulated_content: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "tool_calls": [tc.to_dict() for tc in self.tool_calls] if self.tool_calls else None,
            "is_final": self.is_final,
            "stop_reason": self.stop_reason.value if self.stop_reason else None,
        }


class BaseLLMClient(ABC):
    """
    Abstract base class for completion-provider clients.

    Implements LLMClientProtocol. Subclasses implement ``_call_api`` and
    ``_stream_api``; provider errors are never wrapped so the orchestrator
    can propagate them unmodified.

    Example:
        class MyClient(BaseLLMClient):
            async def _call_api(self, messages, tools, **kwargs):
                ...

            async def _stream_api(self, messages, tools, **kwargs):
                yield StreamChunk(content="hi", is_final=True)
    """

    provider: str = "unknown"

    def __init__(self, config: Optional[LLMConfig] = None, **kwargs):
        if config is None:
            config = LLMConfig(**kwargs)
        else:
            for key, value in kwargs.items():
                if hasattr(config, key):
                    setattr(config, key, value)

        self.config = config

    @abstractmethod
    async def _call_api(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        **kwargs
    ) -> LLMResponse:
        """Make the actual API call (provider-specific)."""
        pass

    @abstractmethod
    def _stream_api(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        **kwargs
    ) -> AsyncIterator[StreamChunk]:
        """Make a streaming API call (provider-specific)."""
        pass

    async def chat_completion(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        config: Optional[Dict[str, Any]] = None,
        **kwargs
    ) -> LLMResponse:
        """
        Send a non-streaming chat completion request.

        Args:
            messages: List of message dicts with 'role' and 'content'
            tools: Optional list of OpenAI-format tool schemas
            config: Optional per-call overrides (max_tokens, temperature, ...)

        Returns:
            LLMResponse with content, tool_calls, usage
        """
        merged_kwargs = {**kwargs}
        if config:
            merged_kwargs.update(config)
        return await self._call_api(messages, tools or None, **merged_kwargs)

    async def stream_completion(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        config: Optional[Dict[str, Any]] = None,
        **kwargs
    ) -> AsyncIterator[StreamChunk]:
        """
        Send a streaming chat completion request.

        Example:
            async for chunk in client.stream_completion(messages):
                print(chunk.content, end="", flush=True)
                if chunk.is_final and chunk.tool_calls:
                    ...
        """
        merged_kwargs = {**kwargs}
        if config:
            merged_kwargs.update(config)

        accumulated = ""
        async for chunk in self._stream_api(messages, tools or None, **merged_kwargs):
            accumulated += chunk.content
            chunk.accumulated_content = accumulated
            yield chunk

    async def close(self) -> None:
        """Release provider resources (no-op by default)"""
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
