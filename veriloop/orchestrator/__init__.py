"""
Veriloop Orchestrator Module

Gather-Act-Verify request loop:
- Evidence gathering from history and knowledge lookups
- Tool-using generation with health-aware tool selection
- Rule-based verification with bounded retries
- Numbered citations and a sources footer
- Context compaction for long conversations

Quick Start:
    from veriloop.orchestrator import Orchestrator, LoopConfig

    orchestrator = Orchestrator(llm_client, registry=registry, config=LoopConfig())
    response = await orchestrator.run("What's the weather in Oslo?")
    print(response.render())
"""

from .loop_config import LoopConfig, TokenUsage, ToolCallRecord, AttemptRecord
from .state import LoopState, LoopStateMachine, InvalidTransition
from .verification import (
    Severity,
    VerificationIssue,
    VerificationResult,
    VerificationRule,
    RULES,
    verify,
    build_retry_prompt,
    graceful_failure_message,
)
from .citations import (
    CitationRegistry,
    CitationReport,
    detect_uncited_claims,
    format_citation_footer,
)
from .context_compactor import (
    CompactionResult,
    ContextCompactor,
    build_llm_summarizer,
    estimate_tokens,
    should_compact,
)
from .gather import EvidenceGatherer, GatheredContext
from .tool_policy import ToolPolicyFilter, ToolSelection
from .audit_logger import AuditLogger
from .orchestrator import Orchestrator

__all__ = [
    "LoopConfig",
    "TokenUsage",
    "ToolCallRecord",
    "AttemptRecord",
    "LoopState",
    "LoopStateMachine",
    "InvalidTransition",
    "Severity",
    "VerificationIssue",
    "VerificationResult",
    "VerificationRule",
    "RULES",
    "verify",
    "build_retry_prompt",
    "graceful_failure_message",
    "CitationRegistry",
    "CitationReport",
    "detect_uncited_claims",
    "format_citation_footer",
    "CompactionResult",
    "ContextCompactor",
    "build_llm_summarizer",
    "estimate_tokens",
    "should_compact",
    "EvidenceGatherer",
    "GatheredContext",
    "ToolPolicyFilter",
    "ToolSelection",
    "AuditLogger",
    "Orchestrator",
]
