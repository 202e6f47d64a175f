"""
Veriloop Tools - discovery, health tracking and guarded execution

Usage:
    from veriloop.tools import ToolRegistry, ToolHealthTracker, ToolGateway

    registry = ToolRegistry()
    registry.add_provider(my_provider)
    gateway = ToolGateway(registry, ToolHealthTracker(), timeout=30)
    result = await gateway.execute("get_forecast", "weather", {"city": "Oslo"})
"""

from .models import ToolDefinition, ToolError, ToolErrorCode, ToolExecutionResult
from .errors import classify_tool_error, format_error_for_model
from .health import HealthStatus, ToolHealth, ToolHealthTracker
from .registry import ToolRegistry, make_mcp_tool_name, parse_mcp_tool_name
from .executor import ToolGateway, sanitize_args
from .local import FunctionToolProvider

__all__ = [
    "ToolDefinition",
    "ToolError",
    "ToolErrorCode",
    "ToolExecutionResult",
    "classify_tool_error",
    "format_error_for_model",
    "HealthStatus",
    "ToolHealth",
    "ToolHealthTracker",
    "ToolRegistry",
    "make_mcp_tool_name",
    "parse_mcp_tool_name",
    "ToolGateway",
    "sanitize_args",
    "FunctionToolProvider",
]
