"""
MCP Protocol - Abstract interface for MCP clients

Users can implement this protocol to integrate any MCP client library.
"""

from typing import Protocol, List, Dict, Any, runtime_checkable

from .models import MCPTool, MCPCallResult


@runtime_checkable
class MCPClientProtocol(Protocol):
    """
    Abstract interface for MCP clients

    Example:
        class MyMCPClient:
            server_name = "files"
            is_connected = True

            async def connect(self) -> None: ...
            async def disconnect(self) -> None: ...
            async def list_tools(self) -> List[MCPTool]: ...
            async def call_tool(self, name, arguments) -> MCPCallResult: ...
    """

    @property
    def server_name(self) -> str:
        """Get the server name"""
        ...

    @property
    def is_connected(self) -> bool:
        """Check if connected to server"""
        ...

    async def connect(self) -> None:
        """
        Connect to the MCP server

        Raises:
            ConnectionError: If connection fails
        """
        ...

    async def disconnect(self) -> None:
        """Disconnect from the MCP server"""
        ...

    async def list_tools(self) -> List[MCPTool]:
        """List all available tools from the MCP server"""
        ...

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> MCPCallResult:
        """Call a tool (name without server prefix)"""
        ...
