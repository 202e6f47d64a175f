"""
Tool Execution Gateway.

Runs one tool call against its provider with a per-attempt timeout, retries
transient failures with backoff, converts any failure into a ToolError, and
reports every attempt to the health tracker. Arguments are logged only in
sanitized form; the dict sent to the provider is never modified.
"""

import asyncio
import logging
import re
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..constants import REDACTED, SENSITIVE_KEY_MARKERS, SENSITIVE_KEY_WORDS
from .errors import classify_tool_error
from .health import HealthStatus, ToolHealthTracker
from .models import ToolError, ToolErrorCode, ToolExecutionResult
from .registry import ToolRegistry

logger = logging.getLogger(__name__)

MAX_LOGGED_STRING = 200
MAX_LOGGED_ITEMS = 10
MAX_LOGGED_DEPTH = 4

# Client errors that another attempt cannot fix
_CLIENT_ERROR_STATUS = re.compile(r"\b(400|401|403|404)\b")

_KEY_SEGMENT_SPLIT = re.compile(r"[^A-Za-z0-9]+|(?<=[a-z0-9])(?=[A-Z])")


def _key_segments(key: str) -> List[str]:
    return [s.lower() for s in _KEY_SEGMENT_SPLIT.split(key) if s]


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    if any(marker in lowered for marker in SENSITIVE_KEY_MARKERS):
        return True
    return any(segment in SENSITIVE_KEY_WORDS for segment in _key_segments(key))


def sanitize_args(value: Any, _depth: int = 0) -> Any:
    """Return a log-safe copy of tool arguments.

    Keys that look like credentials are redacted (case-insensitive), long
    strings and large lists are truncated, and deep nesting is cut off.
    The input is never mutated.
    """
    if _depth > MAX_LOGGED_DEPTH:
        return "[...]"
    if isinstance(value, dict):
        return {
            k: REDACTED if isinstance(k, str) and _is_sensitive_key(k)
            else sanitize_args(v, _depth + 1)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        items = [sanitize_args(v, _depth + 1) for v in value[:MAX_LOGGED_ITEMS]]
        if len(value) > MAX_LOGGED_ITEMS:
            items.append(f"...[{len(value) - MAX_LOGGED_ITEMS} more]")
        return items
    if isinstance(value, str) and len(value) > MAX_LOGGED_STRING:
        return value[:MAX_LOGGED_STRING] + "...[truncated]"
    return value


class ToolGateway:
    """Executes tool calls and keeps provider health up to date.

    Retryable failures (timeouts, dropped connections, rate limits) are
    retried up to ``max_retries`` times with exponential backoff. Every
    attempt is reported to the tracker, and retrying stops as soon as the
    provider turns unhealthy.

    Args:
        registry: Where provider objects are looked up by name
        tracker: Health tracker updated with every call outcome
        timeout: Per-attempt timeout in seconds
        audit: Optional AuditLogger receiving one event per call
        max_retries: Extra attempts after a retryable failure
        backoff: Delay before the first retry; doubles for each later one
        rate_limit_backoff: Delay before retrying a RATE_LIMITED failure
        sleep: Awaitable used to wait between attempts
    """

    def __init__(
        self,
        registry: ToolRegistry,
        tracker: ToolHealthTracker,
        timeout: float = 30.0,
        audit: Optional[Any] = None,
        max_retries: int = 2,
        backoff: float = 1.0,
        rate_limit_backoff: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.registry = registry
        self.tracker = tracker
        self.timeout = timeout
        self.audit = audit
        self.max_retries = max_retries
        self.backoff = backoff
        self.rate_limit_backoff = rate_limit_backoff
        self._sleep = sleep

    async def execute(
        self,
        tool_name: str,
        provider: str,
        args: Dict[str, Any],
        request_id: Optional[str] = None,
    ) -> ToolExecutionResult:
        """Run ``tool_name`` on ``provider``. Never raises for tool failures."""
        safe_args = sanitize_args(args)
        logger.info(f"[Tool] {provider}/{tool_name} args={safe_args}")

        provider_obj = self.registry.get_provider(provider)
        if provider_obj is None:
            error = ToolError(ToolErrorCode.TOOL_NOT_FOUND, f"Unknown provider: {provider}")
            return self._finish(tool_name, provider, safe_args, None, error, 0, 1, request_id)

        start = time.monotonic()
        attempt = 0
        while True:
            attempt += 1
            output, error = await self._attempt(provider_obj, tool_name, provider, args)
            if error is None or not self._should_retry(provider, error, attempt):
                break
            delay = self._retry_delay(error, attempt)
            logger.warning(
                f"[Tool] {provider}/{tool_name} attempt {attempt} failed "
                f"({error.code.value}); retrying in {delay:g}s"
            )
            await self._sleep(delay)

        duration_ms = int((time.monotonic() - start) * 1000)
        return self._finish(tool_name, provider, safe_args, output, error, duration_ms, attempt, request_id)

    async def _attempt(
        self,
        provider_obj: Any,
        tool_name: str,
        provider: str,
        args: Dict[str, Any],
    ) -> Tuple[Any, Optional[ToolError]]:
        try:
            output = await asyncio.wait_for(
                provider_obj.call_tool(tool_name, dict(args)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            error = classify_tool_error(
                TimeoutError(f"Tool '{tool_name}' timed out after {self.timeout}s")
            )
        except Exception as e:
            error = classify_tool_error(e)
        else:
            self.tracker.mark_success(provider)
            return output, None

        if error.code != ToolErrorCode.TOOL_INVALID_INPUT:
            # Bad input is the model's fault, not the provider's
            self.tracker.mark_failure(provider, f"{error.code.value}: {error.message}")
        return None, error

    def _should_retry(self, provider: str, error: ToolError, attempt: int) -> bool:
        if not error.retryable or attempt > self.max_retries:
            return False
        if _CLIENT_ERROR_STATUS.search(error.message):
            return False
        return self.tracker.get(provider).status != HealthStatus.UNHEALTHY

    def _retry_delay(self, error: ToolError, attempt: int) -> float:
        if error.code == ToolErrorCode.RATE_LIMITED:
            return self.rate_limit_backoff
        return self.backoff * (2 ** (attempt - 1))

    def _finish(
        self,
        tool_name: str,
        provider: str,
        safe_args: Any,
        output: Any,
        error: Optional[ToolError],
        duration_ms: int,
        attempts: int,
        request_id: Optional[str],
    ) -> ToolExecutionResult:
        if error is None:
            logger.info(f"[Tool] {provider}/{tool_name} ok in {duration_ms}ms")
        else:
            logger.warning(
                f"[Tool] {provider}/{tool_name} failed in {duration_ms}ms after "
                f"{attempts} attempt(s): {error.code.value} ({error.message})"
            )

        if self.audit is not None:
            self.audit.log_tool_execution(
                tool_name=tool_name,
                provider=provider,
                args_summary=safe_args,
                success=error is None,
                duration_ms=duration_ms,
                error=error.code.value if error else None,
                output_chars=len(str(output)) if output is not None else 0,
                request_id=request_id,
                attempts=attempts,
            )

        return ToolExecutionResult(
            success=error is None,
            output=output,
            error=error,
            duration_ms=duration_ms,
            attempts=attempts,
        )
