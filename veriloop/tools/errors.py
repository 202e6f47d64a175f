"""
Tool error classification.

Every tool failure is normalized to a ToolError so the orchestrator can
hand the model a short, friendly description instead of raising.
"""

import asyncio
from typing import Optional

from .models import ToolError, ToolErrorCode

_RATE_LIMIT_PATTERNS = ("429", "rate limit", "ratelimit", "too many requests")
_TIMEOUT_PATTERNS = ("timeout", "timed out", "aborted", "deadline exceeded")
_CONNECTION_PATTERNS = (
    "econnrefused",
    "econnreset",
    "connecterror",
    "connectionerror",
    "connection refused",
    "connection reset",
    "network",
    "dns",
    "name or service not known",
)
_AUTH_PATTERNS = ("401", "403", "unauthorized", "forbidden")
_INPUT_PATTERNS = ("400", "404", "invalid", "bad request", "not found")

_RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


def _extract_status_code(error: BaseException) -> Optional[int]:
    """Try to pull an HTTP status code out of the exception."""
    response = getattr(error, "response", None)
    if response is not None:
        status = getattr(response, "status_code", None)
        if isinstance(status, int):
            return status
    for attr in ("status_code", "status", "code"):
        val = getattr(error, attr, None)
        if isinstance(val, int):
            return val
    return None


def classify_tool_error(error: BaseException) -> ToolError:
    """Map an exception raised by a tool provider to a ToolError.

    Checks both the exception type name and its message, in priority order:
    rate limit, timeout, connection, auth, invalid input.
    """
    message = str(error) or type(error).__name__
    haystack = f"{type(error).__name__} {error}".lower()
    status = _extract_status_code(error)

    if status == 429 or any(p in haystack for p in _RATE_LIMIT_PATTERNS):
        return ToolError(ToolErrorCode.RATE_LIMITED, message, retryable=True)

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)) or any(
        p in haystack for p in _TIMEOUT_PATTERNS
    ):
        return ToolError(ToolErrorCode.TOOL_EXECUTION_FAILED, message, retryable=True)

    if isinstance(error, ConnectionError) or any(p in haystack for p in _CONNECTION_PATTERNS):
        return ToolError(ToolErrorCode.MCP_CONNECTION_FAILED, message, retryable=True)

    if status in (401, 403) or any(p in haystack for p in _AUTH_PATTERNS):
        return ToolError(ToolErrorCode.TOOL_UNAVAILABLE, f"Auth error: {message}", retryable=False)

    if (
        status in (400, 404)
        or isinstance(error, (ValueError, TypeError, KeyError))
        or any(p in haystack for p in _INPUT_PATTERNS)
    ):
        return ToolError(ToolErrorCode.TOOL_INVALID_INPUT, message, retryable=False)

    return ToolError(
        ToolErrorCode.TOOL_EXECUTION_FAILED,
        message,
        retryable=status in _RETRYABLE_STATUS,
    )


def format_error_for_model(tool_name: str, error: ToolError) -> str:
    """Describe a failed tool call to the LLM without leaking raw error text."""
    if error.code == ToolErrorCode.RATE_LIMITED:
        return f"The {tool_name} tool is rate limited right now. Wait a bit before trying it again."
    if error.code == ToolErrorCode.TOOL_INVALID_INPUT:
        return f"The {tool_name} tool rejected the request. Check the required fields and their format."
    if error.code == ToolErrorCode.TOOL_NOT_FOUND:
        return f"The {tool_name} tool is not available."
    if error.code == ToolErrorCode.MCP_CONNECTION_FAILED:
        return f"The {tool_name} tool service could not be reached."
    if error.code == ToolErrorCode.TOOL_UNAVAILABLE:
        return f"The {tool_name} tool is unavailable right now."
    if error.retryable:
        return f"The {tool_name} tool did not respond in time. Answer without it or try a different approach."
    return f"The {tool_name} tool failed. Answer without it or try a different approach."
