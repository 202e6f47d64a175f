"""Gather-Act-Verify loop configuration and telemetry dataclasses.

Centralizes all tunable parameters of the request loop, along with the
structured records the loop keeps about tool calls and token usage.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..constants import MAX_ATTEMPTS


@dataclass
class LoopConfig:
    """All loop configuration centralized in one place."""

    # Attempts
    max_attempts: int = MAX_ATTEMPTS
    """Generate/verify attempts before the graceful-failure response."""
    max_tool_loops: int = 5
    """Tool rounds per attempt before the model is forced to answer in text."""

    # Timeouts (seconds)
    tool_execution_timeout: float = 30.0
    """Per tool call."""
    tool_max_retries: int = 2
    """Extra attempts for a retryable tool failure (0 disables retries)."""
    tool_retry_backoff: float = 1.0
    """First retry delay; doubles on each further retry."""
    tool_rate_limit_backoff: float = 30.0
    """Retry delay after a RATE_LIMITED failure."""
    stream_idle_timeout: float = 60.0
    """Max wait for the next chunk of a completion stream."""
    summarizer_timeout: float = 30.0
    """Max wait for the compaction summary."""

    # Context budget
    context_token_limit: int = 100_000
    """Context window budget in estimated tokens."""
    compaction_threshold: float = 0.8
    """Compact when the estimate strictly exceeds limit * threshold."""
    keep_last_n: int = 10
    """Messages kept verbatim after compaction."""
    max_summary_tokens: int = 1024
    """Output cap for the summarizer call."""
    max_tool_result_chars: int = 20_000
    """Single tool result hard character limit before it is fed back."""

    # Gather
    max_history_snippets: int = 5
    """Relevant prior turns quoted in the evidence block."""
    max_excerpt_chars: int = 500
    """Excerpt cap per evidence item."""
    max_lookup_results: int = 5
    """Hits kept per knowledge lookup."""

    # Retry prompt
    retry_excerpt_chars: int = 500
    """How much of the failed draft is quoted back to the model."""

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.max_tool_loops < 0:
            raise ValueError("max_tool_loops must be >= 0")
        if self.tool_max_retries < 0:
            raise ValueError("tool_max_retries must be >= 0")
        if not 0 < self.compaction_threshold <= 1:
            raise ValueError("compaction_threshold must be in (0, 1]")


@dataclass
class TokenUsage:
    """Accumulated token usage counters."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class ToolCallRecord:
    """Per-call telemetry for a single tool invocation."""

    name: str
    """Model-facing tool name."""
    provider: Optional[str]
    """Provider that served the call (None if the tool was unknown)."""
    args_summary: Any
    """Sanitized argument snapshot."""
    duration_ms: int = 0
    success: bool = True
    error_code: Optional[str] = None


@dataclass
class AttemptRecord:
    """What one attempt produced, kept for the final audit event."""

    attempt: int
    passed: bool
    issues: List[Dict[str, str]] = field(default_factory=list)
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
