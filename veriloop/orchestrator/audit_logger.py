"""
Structured audit logging for the request loop.

Produces JSON log entries via Python's standard logging module under the
``veriloop.audit`` logger name, and forwards the same entries to any
registered sinks (tracing exporters, metrics adapters, test recorders).
Sinks are write-only: nothing in the loop ever reads audit data back.

Usage::

    audit = AuditLogger()
    audit.add_sink(my_exporter)
    audit.log_phase(request_id="r-1", phase="gather", attempt=1)
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

_audit_logger = logging.getLogger("veriloop.audit")
logger = logging.getLogger(__name__)

AuditSink = Callable[[Dict[str, Any]], None]


class AuditLogger:
    """Structured audit logger for phase boundaries, verification and tool calls."""

    def __init__(self, sinks: Optional[List[AuditSink]] = None) -> None:
        self._sinks: List[AuditSink] = list(sinks or [])

    def add_sink(self, sink: AuditSink) -> None:
        self._sinks.append(sink)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _emit(self, event_type: str, fields: Dict[str, Any]) -> None:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
        }
        entry.update(fields)
        _audit_logger.info(json.dumps(entry, default=str))
        for sink in self._sinks:
            try:
                sink(dict(entry))
            except Exception as e:
                logger.warning(f"[Audit] sink {sink!r} failed on {event_type}: {e}")

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    def log_phase(
        self,
        request_id: Optional[str],
        phase: str,
        attempt: int,
        **details: Any,
    ) -> None:
        """Log a phase boundary (gather/act/tool/verify/final)."""
        self._emit("phase", {
            "request_id": request_id,
            "phase": phase,
            "attempt": attempt,
            **details,
        })

    def log_verification(
        self,
        request_id: Optional[str],
        attempt: int,
        passed: bool,
        issues: List[Dict[str, str]],
    ) -> None:
        """Log one verification pass."""
        self._emit("verification", {
            "request_id": request_id,
            "attempt": attempt,
            "passed": passed,
            "issues": issues,
            "error_count": sum(1 for i in issues if i.get("severity") == "error"),
        })

    def log_tool_execution(
        self,
        tool_name: str,
        provider: str,
        args_summary: Any,
        success: bool,
        duration_ms: int,
        error: Optional[str] = None,
        output_chars: int = 0,
        request_id: Optional[str] = None,
        attempts: int = 1,
    ) -> None:
        """Log a tool execution result (arguments already sanitized)."""
        fields: Dict[str, Any] = {
            "request_id": request_id,
            "tool_name": tool_name,
            "provider": provider,
            "args_summary": args_summary,
            "success": success,
            "duration_ms": duration_ms,
            "output_chars": output_chars,
            "attempts": attempts,
        }
        if error is not None:
            fields["error"] = error
        self._emit("tool_execution", fields)

    def log_compaction(
        self,
        request_id: Optional[str],
        applied: bool,
        original_tokens: int,
        compacted_tokens: int,
    ) -> None:
        self._emit("compaction", {
            "request_id": request_id,
            "applied": applied,
            "original_tokens": original_tokens,
            "compacted_tokens": compacted_tokens,
        })

    def log_health_transition(
        self,
        provider: str,
        old_status: Any,
        new_status: Any,
        consecutive_failures: int,
    ) -> None:
        """Matches the ToolHealthTracker ``on_transition`` signature."""
        self._emit("health_transition", {
            "provider": provider,
            "old_status": getattr(old_status, "value", old_status),
            "new_status": getattr(new_status, "value", new_status),
            "consecutive_failures": consecutive_failures,
        })

    def log_request_complete(
        self,
        request_id: Optional[str],
        verified: bool,
        attempt_count: int,
        source_count: int,
        duration_ms: int,
        unavailable_providers: Optional[List[str]] = None,
    ) -> None:
        self._emit("request_complete", {
            "request_id": request_id,
            "verified": verified,
            "attempt_count": attempt_count,
            "source_count": source_count,
            "duration_ms": duration_ms,
            "unavailable_providers": unavailable_providers or [],
        })
