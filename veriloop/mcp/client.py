"""
MCP Client - JSON-RPC over streamable HTTP

``HTTPMCPClient`` talks to a remote MCP server with httpx. Each request is an
independent POST; the server may answer with plain JSON or with a short
``text/event-stream`` body carrying the JSON-RPC response.

``MockMCPClient`` serves canned tools in-process for tests.
"""

import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .models import MCPCallResult, MCPServerConfig, MCPTool

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2025-03-26"
SESSION_HEADER = "Mcp-Session-Id"


class MCPError(Exception):
    """JSON-RPC error returned by an MCP server"""

    def __init__(self, code: int, message: str, server_name: str = ""):
        self.code = code
        self.server_name = server_name
        super().__init__(f"MCP error {code} from {server_name or 'server'}: {message}")


class HTTPMCPClient:
    """
    MCP client for servers exposed over HTTP.

    Example:
        config = MCPServerConfig(name="weather", url="http://localhost:8080/mcp")
        client = HTTPMCPClient(config)
        await client.connect()

        tools = await client.list_tools()
        result = await client.call_tool("get_forecast", {"city": "Oslo"})

        await client.disconnect()
    """

    def __init__(
        self,
        config: MCPServerConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            config: MCP server configuration
            transport: Optional httpx transport (e.g. ``httpx.MockTransport`` in tests)
        """
        self.config = config
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None
        self._session_id: Optional[str] = None
        self._request_id = 0
        self.server_info: Dict[str, Any] = {}

    @property
    def server_name(self) -> str:
        return self.config.name

    @property
    def is_connected(self) -> bool:
        return self._http is not None

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
            **self.config.headers,
        }
        if self.config.bearer_token:
            headers["Authorization"] = f"Bearer {self.config.bearer_token}"
        if self._session_id:
            headers[SESSION_HEADER] = self._session_id
        return headers

    async def connect(self) -> None:
        """Open the HTTP client and perform the MCP initialize handshake."""
        if self._http is not None:
            logger.warning(f"[MCP] already connected to {self.server_name}")
            return

        logger.info(f"[MCP] connecting to {self.server_name} at {self.config.url}")
        self._http = httpx.AsyncClient(timeout=self.config.timeout, transport=self._transport)
        try:
            result = await self._request("initialize", {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": "veriloop", "version": "0.1.0"},
            })
            self.server_info = result.get("serverInfo", {}) if isinstance(result, dict) else {}
            await self._notify("notifications/initialized")
        except Exception as e:
            await self.disconnect()
            raise ConnectionError(f"MCP connection to {self.server_name} failed: {e}") from e
        logger.info(f"[MCP] connected to {self.server_name}")

    async def disconnect(self) -> None:
        if self._http is None:
            return
        logger.info(f"[MCP] disconnecting from {self.server_name}")
        http, self._http = self._http, None
        self._session_id = None
        await http.aclose()

    async def list_tools(self) -> List[MCPTool]:
        tools: List[MCPTool] = []
        cursor: Optional[str] = None
        while True:
            params = {"cursor": cursor} if cursor else {}
            result = await self._request("tools/list", params)
            tools.extend(MCPTool.from_dict(t, self.server_name) for t in result.get("tools", []))
            cursor = result.get("nextCursor")
            if not cursor:
                return tools

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> MCPCallResult:
        result = await self._request("tools/call", {"name": name, "arguments": arguments})
        return MCPCallResult(
            content=result.get("content") or [],
            is_error=bool(result.get("isError")),
            structured_content=result.get("structuredContent"),
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        if self._http is None:
            raise ConnectionError(f"Not connected to MCP server {self.server_name}")
        response = await self._http.post(self.config.url, json=payload, headers=self._headers())
        response.raise_for_status()
        session_id = response.headers.get(SESSION_HEADER)
        if session_id:
            self._session_id = session_id
        return response

    async def _notify(self, method: str) -> None:
        await self._post({"jsonrpc": "2.0", "method": method})

    async def _request(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        self._request_id += 1
        request_id = self._request_id
        response = await self._post({
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
            "params": params,
        })

        message = self._parse_response(response, request_id)
        if "error" in message:
            err = message["error"] or {}
            raise MCPError(err.get("code", -32603), err.get("message", "unknown error"), self.server_name)
        result = message.get("result")
        return result if isinstance(result, dict) else {}

    @staticmethod
    def _parse_response(response: httpx.Response, request_id: int) -> Dict[str, Any]:
        content_type = response.headers.get("content-type", "")
        if "text/event-stream" not in content_type:
            return response.json()

        for line in response.text.splitlines():
            if not line.startswith("data:"):
                continue
            data = line[len("data:"):].strip()
            if not data:
                continue
            message = json.loads(data)
            if isinstance(message, dict) and message.get("id") == request_id:
                return message
        raise MCPError(-32603, f"no response for request {request_id} in event stream")

    def __repr__(self) -> str:
        status = "connected" if self.is_connected else "disconnected"
        return f"HTTPMCPClient(server='{self.server_name}', status={status})"


class MockMCPClient:
    """
    Mock MCP client for testing

    Example:
        client = MockMCPClient(
            name="test-server",
            tools=[
                MCPTool(
                    name="echo",
                    description="Echo input",
                    input_schema={"type": "object", "properties": {"text": {"type": "string"}}},
                    server_name="test-server"
                )
            ]
        )
        await client.connect()
    """

    def __init__(
        self,
        name: str = "mock-server",
        tools: Optional[List[MCPTool]] = None,
        tool_handler: Optional[Callable[[str, Dict[str, Any]], Awaitable[Any]]] = None,
    ):
        self._name = name
        self._tools = tools or []
        self._tool_handler = tool_handler
        self._connected = False
        self.calls: List[Dict[str, Any]] = []

    @property
    def server_name(self) -> str:
        return self._name

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def list_tools(self) -> List[MCPTool]:
        if not self._connected:
            raise ConnectionError("Not connected to MCP server")
        return list(self._tools)

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> MCPCallResult:
        if not self._connected:
            raise ConnectionError("Not connected to MCP server")
        self.calls.append({"name": name, "arguments": arguments})
        if self._tool_handler is None:
            return MCPCallResult(content=[{"type": "text", "text": f"Mock result for {name}"}])
        result = await self._tool_handler(name, arguments)
        if isinstance(result, MCPCallResult):
            return result
        text = result if isinstance(result, str) else json.dumps(result)
        return MCPCallResult(content=[{"type": "text", "text": text}])
