"""
Tool registry keyed by (provider, tool name).

Tool schemas arrive at runtime from providers, so the registry never mutates
its mapping in place: a refresh builds a new mapping and swaps it in under a
lock. Readers always work from an immutable snapshot, which keeps a request's
tool list stable while another request refreshes a provider.

Usage::

    registry = ToolRegistry(discovery_ttl=300)
    registry.add_provider(weather_provider)
    await registry.refresh_stale()

    tool = registry.resolve("weather__get_forecast")
    provider = registry.get_provider(tool.provider)
"""

import logging
import threading
import time
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from ..constants import MCP_TOOL_SEPARATOR
from ..protocols import ToolProviderProtocol
from .models import ToolDefinition

logger = logging.getLogger(__name__)


def make_mcp_tool_name(server_name: str, tool_name: str) -> str:
    """Model-facing name for an MCP tool: ``{server}__{tool}``."""
    return f"{server_name}{MCP_TOOL_SEPARATOR}{tool_name}"


def parse_mcp_tool_name(name: str) -> Optional[Tuple[str, str]]:
    """Split ``server__tool`` on the first separator; None if not an MCP name."""
    server, sep, tool = name.partition(MCP_TOOL_SEPARATOR)
    if not sep or not server or not tool:
        return None
    return server, tool


class ToolRegistry:
    """Copy-on-write registry of tools and the providers that serve them.

    Args:
        discovery_ttl: Seconds before a provider's tool list is re-fetched
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        discovery_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.discovery_ttl = discovery_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._providers: Dict[str, ToolProviderProtocol] = {}
        self._tools: Mapping[Tuple[str, str], ToolDefinition] = MappingProxyType({})
        self._discovered_at: Dict[str, float] = {}

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def add_provider(self, provider: ToolProviderProtocol) -> None:
        with self._lock:
            self._providers[provider.name] = provider
        logger.info(f"[Tool] provider registered: {provider.name}")

    def remove_provider(self, name: str) -> None:
        with self._lock:
            self._providers.pop(name, None)
            self._discovered_at.pop(name, None)
            self._tools = MappingProxyType(
                {k: v for k, v in self._tools.items() if k[0] != name}
            )

    def get_provider(self, name: str) -> Optional[ToolProviderProtocol]:
        return self._providers.get(name)

    @property
    def provider_names(self) -> List[str]:
        return list(self._providers)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def needs_refresh(self, provider_name: str) -> bool:
        """True if never discovered or the last discovery is older than the TTL."""
        discovered_at = self._discovered_at.get(provider_name)
        if discovered_at is None:
            return True
        return self._clock() - discovered_at >= self.discovery_ttl

    def _replace_provider_tools(self, provider_name: str, tools: List[ToolDefinition]) -> None:
        with self._lock:
            updated = {k: v for k, v in self._tools.items() if k[0] != provider_name}
            taken = {t.exposed_name for t in updated.values()}
            for tool in tools:
                if tool.exposed_name in taken:
                    logger.warning(
                        f"[Tool] duplicate tool name '{tool.exposed_name}' from "
                        f"{provider_name}; keeping the earlier registration"
                    )
                    continue
                updated[(provider_name, tool.name)] = tool
                taken.add(tool.exposed_name)
            self._tools = MappingProxyType(updated)
            self._discovered_at[provider_name] = self._clock()

    async def refresh(self, provider_name: str) -> int:
        """Re-fetch one provider's tools; returns how many were registered.

        Errors propagate to the caller; the previous tool list stays in place.
        """
        provider = self._providers.get(provider_name)
        if provider is None:
            raise KeyError(f"Unknown tool provider: {provider_name}")
        tools = [t for t in await provider.list_tools() if t.provider == provider_name]
        self._replace_provider_tools(provider_name, tools)
        logger.info(f"[Tool] discovered {len(tools)} tool(s) from {provider_name}")
        return len(tools)

    async def refresh_stale(self) -> Dict[str, Optional[str]]:
        """Refresh every provider whose discovery is stale.

        Discovery failures are logged and reported per provider; they never
        raise, and the provider keeps its previous tools.
        """
        outcome: Dict[str, Optional[str]] = {}
        for name in list(self._providers):
            if not self.needs_refresh(name):
                continue
            try:
                await self.refresh(name)
                outcome[name] = None
            except Exception as e:
                logger.warning(f"[Tool] discovery failed for {name}: {e}")
                outcome[name] = str(e)
        return outcome

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def snapshot(self) -> List[ToolDefinition]:
        """All registered tools, in registration order."""
        return list(self._tools.values())

    def resolve(self, exposed_name: str) -> Optional[ToolDefinition]:
        """Find the tool the LLM called by its model-facing name."""
        for tool in self._tools.values():
            if tool.exposed_name == exposed_name:
                return tool
        return None
