"""
Veriloop Tool Models - Data structures for tool discovery and execution
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ToolErrorCode(str, Enum):
    """Normalized tool failure categories"""
    RATE_LIMITED = "RATE_LIMITED"
    TOOL_EXECUTION_FAILED = "TOOL_EXECUTION_FAILED"
    MCP_CONNECTION_FAILED = "MCP_CONNECTION_FAILED"
    TOOL_UNAVAILABLE = "TOOL_UNAVAILABLE"
    TOOL_INVALID_INPUT = "TOOL_INVALID_INPUT"
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"


@dataclass(frozen=True)
class ToolError:
    """
    A classified tool failure

    Attributes:
        code: Normalized category
        message: Raw error text (for logs; never shown to the user verbatim)
        retryable: Whether the same call may succeed later
    """
    code: ToolErrorCode
    message: str
    retryable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code.value, "message": self.message, "retryable": self.retryable}


@dataclass
class ToolExecutionResult:
    """
    Outcome of one gateway call

    Exactly one of ``output`` / ``error`` is meaningful, selected by ``success``.
    """
    success: bool
    output: Any = None
    error: Optional[ToolError] = None
    duration_ms: int = 0
    attempts: int = 1

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "duration_ms": self.duration_ms,
            "attempts": self.attempts,
        }
        if self.success:
            data["output"] = self.output
        else:
            data["error"] = self.error.to_dict() if self.error else None
        return data


@dataclass(frozen=True)
class ToolDefinition:
    """
    A tool offered to the completion provider

    Attributes:
        name: Name the provider knows the tool by (e.g. "get_forecast")
        provider: Identity of the tool provider (health-tracking unit)
        description: Tool description for the LLM
        parameters: JSON Schema for tool parameters
        model_name: Name exposed to the LLM; defaults to ``name``
    """
    name: str
    provider: str
    description: str = ""
    parameters: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    model_name: Optional[str] = None

    @property
    def key(self) -> tuple:
        return (self.provider, self.name)

    @property
    def exposed_name(self) -> str:
        return self.model_name or self.name

    def to_openai_schema(self, description_prefix: str = "") -> Dict[str, Any]:
        """Convert to OpenAI function calling format"""
        return {
            "type": "function",
            "function": {
                "name": self.exposed_name,
                "description": f"{description_prefix}{self.description}",
                "parameters": self.parameters,
            },
        }
