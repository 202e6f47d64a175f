"""
MCP Tool Provider - Bridge between MCP servers and the Veriloop ToolRegistry

Each MCP server is one tool provider: its tools are exposed to the model as
``{server}__{tool}`` and its failures are tracked together.
"""

import logging
from typing import Any, Dict, List, Optional

from ..tools.models import ToolDefinition
from ..tools.registry import ToolRegistry, make_mcp_tool_name
from .client import HTTPMCPClient
from .models import MCPServerConfig
from .protocol import MCPClientProtocol

logger = logging.getLogger(__name__)


class MCPToolError(RuntimeError):
    """An MCP tool answered with ``isError: true``"""


class MCPToolProvider:
    """
    Adapts one MCP client to the tool provider interface

    Example:
        provider = MCPToolProvider(HTTPMCPClient(config))
        registry.add_provider(provider)
        await registry.refresh(provider.name)
    """

    def __init__(self, client: MCPClientProtocol):
        self.client = client

    @property
    def name(self) -> str:
        return self.client.server_name

    async def _ensure_connected(self) -> None:
        if not self.client.is_connected:
            await self.client.connect()

    async def list_tools(self) -> List[ToolDefinition]:
        """Discover tools from the server (connecting lazily)."""
        await self._ensure_connected()
        mcp_tools = await self.client.list_tools()
        logger.info(f"[MCP] {len(mcp_tools)} tool(s) listed by {self.name}")
        return [
            ToolDefinition(
                name=t.name,
                provider=self.name,
                description=t.description,
                parameters=t.input_schema,
                model_name=make_mcp_tool_name(self.name, t.name),
            )
            for t in mcp_tools
        ]

    async def call_tool(self, tool_name: str, arguments: Dict[str, Any]) -> Any:
        await self._ensure_connected()
        result = await self.client.call_tool(tool_name, arguments)
        if result.is_error:
            raise MCPToolError(result.text or f"MCP tool {tool_name} returned an error")
        if result.structured_content is not None:
            return result.structured_content
        return result.text

    def __repr__(self) -> str:
        return f"MCPToolProvider(server='{self.name}')"


class MCPManager:
    """
    Owns the MCP clients configured for an application

    Example:
        manager = MCPManager(registry)
        manager.add_server(MCPServerConfig(name="weather", url="http://..."))
        await registry.refresh_stale()
        ...
        await manager.close()
    """

    def __init__(self, registry: ToolRegistry):
        self.registry = registry
        self._providers: Dict[str, MCPToolProvider] = {}

    def add_client(self, client: MCPClientProtocol) -> MCPToolProvider:
        provider = MCPToolProvider(client)
        self._providers[provider.name] = provider
        self.registry.add_provider(provider)
        return provider

    def add_server(self, config: MCPServerConfig) -> Optional[MCPToolProvider]:
        """Register a configured server; discovery happens on the next refresh."""
        if not config.enabled:
            logger.info(f"[MCP] server {config.name} disabled; skipping")
            return None
        return self.add_client(HTTPMCPClient(config))

    @property
    def server_names(self) -> List[str]:
        return list(self._providers)

    async def close(self) -> None:
        for name, provider in list(self._providers.items()):
            try:
                await provider.client.disconnect()
            except Exception as e:
                logger.warning(f"[MCP] error disconnecting {name}: {e}")
            self.registry.remove_provider(name)
        self._providers.clear()
