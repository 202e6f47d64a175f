"""
Veriloop Protocols - Abstract interfaces for the external collaborators

These protocols define the contracts that the completion provider, tool
providers and knowledge lookups must fulfill. Any object with matching
methods works; subclassing is not required.
"""

from typing import Protocol, List, Dict, Any, Optional, AsyncIterator, runtime_checkable


@runtime_checkable
class LLMClientProtocol(Protocol):
    """
    Abstract interface for the completion provider

    ``stream_completion`` drives the Act phase; ``chat_completion`` is used
    for the non-streaming summarizer call.

    Example:
        class MyLLMClient:
            async def chat_completion(self, messages, tools=None, config=None):
                return LLMResponse(content="...")

            async def stream_completion(self, messages, tools=None, config=None):
                yield StreamChunk(content="Hello")
                yield StreamChunk(is_final=True, stop_reason=StopReason.END_TURN)
    """

    async def chat_completion(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict]] = None,
        config: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Call LLM for a single non-streaming completion

        Returns:
            LLMResponse-compatible object with ``content``
        """
        ...

    def stream_completion(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict]] = None,
        config: Optional[Dict[str, Any]] = None
    ) -> AsyncIterator[Any]:
        """
        Stream a completion

        Yields:
            StreamChunk objects: text deltas, then one final chunk carrying
            tool calls (if any), the stop reason and usage
        """
        ...


@runtime_checkable
class KnowledgeLookupProtocol(Protocol):
    """
    Abstract interface for knowledge/preference lookups

    Keyword-based. Each hit is a dict with ``reference`` and ``content`` and
    optionally ``category``, ``tags``, ``title`` and ``kind``.
    """

    async def search(self, query: str) -> List[Dict[str, Any]]:
        """Search entries relevant to query"""
        ...


@runtime_checkable
class ToolProviderProtocol(Protocol):
    """
    Abstract interface for a tool provider

    A provider is the unit of health tracking: every tool it exposes is
    degraded or excluded together.
    """

    @property
    def name(self) -> str:
        """Provider identity used by the health tracker"""
        ...

    async def list_tools(self) -> List[Any]:
        """Return the ToolDefinitions currently offered by the provider"""
        ...

    async def call_tool(self, tool_name: str, arguments: Dict[str, Any]) -> Any:
        """Execute one tool; raise on failure"""
        ...
