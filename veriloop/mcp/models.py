"""
MCP Models - Data structures for MCP integration
"""

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional


@dataclass
class MCPServerConfig:
    """
    Configuration for an MCP server reached over streamable HTTP

    Attributes:
        name: Unique name for this MCP server (also its provider identity)
        url: JSON-RPC endpoint
        headers: Extra HTTP headers
        bearer_token: Optional token sent as ``Authorization: Bearer ...``
        timeout: Per-request timeout in seconds
        enabled: Disabled servers are skipped at startup

    Example:
        config = MCPServerConfig(
            name="weather",
            url="http://localhost:8080/mcp",
            bearer_token="...",
        )
    """
    name: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    bearer_token: Optional[str] = None
    timeout: float = 30.0
    enabled: bool = True

    def __post_init__(self):
        if not self.name:
            raise ValueError("MCP server requires a 'name'")
        if "__" in self.name:
            raise ValueError(f"MCP server name '{self.name}' must not contain '__'")
        if not self.url:
            raise ValueError(f"MCP server '{self.name}' requires a 'url'")


@dataclass
class MCPTool:
    """
    A tool as advertised by an MCP server

    Attributes:
        name: Tool name (as defined by MCP server)
        description: Tool description
        input_schema: JSON Schema for tool parameters
        server_name: Name of the MCP server providing this tool
    """
    name: str
    description: str
    input_schema: Dict[str, Any]
    server_name: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any], server_name: str) -> "MCPTool":
        return cls(
            name=data["name"],
            description=data.get("description") or "",
            input_schema=data.get("inputSchema") or {"type": "object", "properties": {}},
            server_name=server_name,
        )


@dataclass
class MCPCallResult:
    """Result from calling an MCP tool"""
    content: List[Dict[str, Any]] = field(default_factory=list)
    is_error: bool = False
    structured_content: Optional[Dict[str, Any]] = None

    @property
    def text(self) -> str:
        """Concatenated text blocks"""
        parts = [
            block.get("text", "")
            for block in self.content
            if isinstance(block, dict) and block.get("type", "text") == "text"
        ]
        return "\n".join(p for p in parts if p)
