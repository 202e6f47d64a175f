"""
Veriloop MCP integration

Usage:
    from veriloop.mcp import MCPManager, MCPServerConfig

    manager = MCPManager(registry)
    manager.add_server(MCPServerConfig(name="weather", url="http://localhost:8080/mcp"))
"""

from .models import MCPServerConfig, MCPTool, MCPCallResult
from .protocol import MCPClientProtocol
from .client import HTTPMCPClient, MockMCPClient, MCPError
from .provider import MCPToolProvider, MCPManager, MCPToolError

__all__ = [
    "MCPServerConfig",
    "MCPTool",
    "MCPCallResult",
    "MCPClientProtocol",
    "HTTPMCPClient",
    "MockMCPClient",
    "MCPError",
    "MCPToolProvider",
    "MCPManager",
    "MCPToolError",
]
