"""
Veriloop Orchestrator - Gather-Act-Verify request loop

One request runs as a bounded sequence of attempts. Each attempt:

1. **Gather** -- compact the history if it is over budget (first attempt
   only), refresh stale tool discovery, collect evidence and number it.
2. **Act** -- stream a completion with the tools the health policy allows.
   Tool calls are executed one at a time through the gateway and their
   results are fed back into the same turn, for at most ``max_tool_loops``
   rounds.
3. **Verify** -- score the buffered draft. A pass releases it; a failure
   folds the named issues into the next attempt.

After ``max_attempts`` failures the fixed graceful-failure response is
returned. Drafts are buffered until they pass, so no unverified text ever
reaches the caller, on ``run()`` or on the ``stream_message()`` channel.

Completion-provider errors propagate unmodified. Gather, compaction and tool
errors are logged and only reduce what the model gets to work with.

Usage::

    orchestrator = Orchestrator(llm_client, registry=registry, knowledge=[kb])
    response = await orchestrator.run("What is the weather?", RequestContext(history=[...]))

    async for event in orchestrator.stream_message("What is the weather?"):
        ...
"""

import asyncio
import inspect
import json
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from ..constants import UNPARSED_ARGUMENTS_KEY
from ..llm.base import LLMResponse, StopReason, ToolCall
from ..models import AttemptContext, Message, RequestContext
from ..protocols import KnowledgeLookupProtocol
from ..result import AgentResponse
from ..streaming.models import AgentEvent, EventType, Phase
from ..tools.errors import format_error_for_model
from ..tools.executor import ToolGateway, sanitize_args
from ..tools.health import HealthStatus, ToolHealthTracker
from ..tools.models import ToolError, ToolErrorCode, ToolExecutionResult
from ..tools.registry import ToolRegistry
from .audit_logger import AuditLogger
from .citations import CitationRegistry, format_citation_footer
from .context_compactor import ContextCompactor, Summarizer, build_llm_summarizer
from .gather import EvidenceGatherer, GatheredContext
from .loop_config import AttemptRecord, LoopConfig, TokenUsage, ToolCallRecord
from .prompts import build_system_prompt, render_unavailable_note
from .state import LoopState, LoopStateMachine
from .tool_policy import ToolPolicyFilter, ToolSelection
from .verification import build_retry_prompt, graceful_failure_message, verify

logger = logging.getLogger(__name__)


@dataclass
class _ActOutcome:
    """What the Act phase of one attempt produced."""

    text: str = ""
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    failed_providers: List[str] = field(default_factory=list)


class Orchestrator:
    """
    Request-handling core: gather evidence, generate with tools, verify.

    Args:
        llm_client: Completion provider (``stream_completion`` / ``chat_completion``)
        registry: Tool registry; an empty one is created if omitted
        tracker: Shared provider health tracker
        knowledge: Lookups whose hits become citable evidence
        preferences: Lookups whose hits steer the system prompt
        config: Loop configuration
        audit: Structured observability hook
        summarizer: Compaction summarizer; defaults to one backed by ``llm_client``
        tool_policy: Tool filter; defaults to health-only filtering
        custom_instructions: Extra system prompt text
    """

    def __init__(
        self,
        llm_client: Any,
        registry: Optional[ToolRegistry] = None,
        tracker: Optional[ToolHealthTracker] = None,
        knowledge: Sequence[KnowledgeLookupProtocol] = (),
        preferences: Sequence[KnowledgeLookupProtocol] = (),
        config: Optional[LoopConfig] = None,
        audit: Optional[AuditLogger] = None,
        summarizer: Optional[Summarizer] = None,
        tool_policy: Optional[ToolPolicyFilter] = None,
        custom_instructions: str = "",
    ):
        self.llm_client = llm_client
        self.config = config or LoopConfig()
        self.audit = audit or AuditLogger()
        self.registry = registry or ToolRegistry()
        self.tracker = tracker or ToolHealthTracker(on_transition=self.audit.log_health_transition)
        self.gateway = ToolGateway(
            self.registry,
            self.tracker,
            timeout=self.config.tool_execution_timeout,
            audit=self.audit,
            max_retries=self.config.tool_max_retries,
            backoff=self.config.tool_retry_backoff,
            rate_limit_backoff=self.config.tool_rate_limit_backoff,
        )
        self.tool_policy = tool_policy or ToolPolicyFilter(self.tracker)
        self.gatherer = EvidenceGatherer(self.config, knowledge, preferences)
        self.compactor = ContextCompactor(
            self.config,
            summarizer or build_llm_summarizer(
                llm_client,
                timeout=self.config.summarizer_timeout,
                max_tokens=self.config.max_summary_tokens,
            ),
        )
        self.custom_instructions = custom_instructions

    # ==========================================================================
    # PUBLIC API
    # ==========================================================================

    async def run(
        self,
        user_message: str,
        context: Optional[RequestContext] = None,
    ) -> AgentResponse:
        """Handle one request and return the authoritative response."""
        response: Optional[AgentResponse] = None
        async for event in self._loop_events(user_message, context or RequestContext()):
            if event.type == EventType.EXECUTION_END:
                response = event.data["response"]
        if response is None:
            raise RuntimeError("request loop ended without a response")
        return response

    async def stream_message(
        self,
        user_message: str,
        context: Optional[RequestContext] = None,
    ) -> AsyncIterator[AgentEvent]:
        """Yield progress events, then the released text, then EXECUTION_END.

        Provider errors are reported as an ERROR event and re-raised.
        """
        ctx = context or RequestContext()
        try:
            async for event in self._loop_events(user_message, ctx):
                yield event
        except Exception as e:
            yield AgentEvent(
                type=EventType.ERROR,
                data={"error": str(e), "error_type": type(e).__name__},
                request_id=ctx.request_id,
            )
            raise

    # ==========================================================================
    # LOOP
    # ==========================================================================

    async def _loop_events(
        self,
        user_message: str,
        ctx: RequestContext,
    ) -> AsyncIterator[AgentEvent]:
        if not ctx.request_id:
            ctx.request_id = uuid.uuid4().hex[:12]
        request_id = ctx.request_id
        started = time.monotonic()
        sequence = 0

        def event(event_type: EventType, data: Dict[str, Any]) -> AgentEvent:
            nonlocal sequence
            sequence += 1
            return AgentEvent(type=event_type, data=data, request_id=request_id, sequence=sequence)

        machine = LoopStateMachine()
        attempt_ctx = AttemptContext()
        history: Sequence[Message] = tuple(ctx.history)
        records: List[AttemptRecord] = []
        usage = TokenUsage()

        logger.info(f"[Loop] {request_id} start: history={len(history)} message_chars={len(user_message)}")

        for attempt in range(1, self.config.max_attempts + 1):
            attempt_ctx.attempt_number = attempt

            # ---------------- Gather ----------------
            yield event(EventType.PHASE_CHANGE, {"phase": Phase.GATHER.value, "attempt": attempt})
            await self._notify_phase(ctx, Phase.GATHER, {"attempt": attempt})

            if attempt == 1:
                history = await self._compact_history(history, user_message, request_id)
            await self._refresh_tools()
            gathered = await self._gather(user_message, history)
            citations = CitationRegistry.build(gathered.evidence)
            selection = self.tool_policy.select(self.registry.snapshot())

            # ---------------- Act ----------------
            machine.transition(LoopState.DRAFTING)
            yield event(EventType.PHASE_CHANGE, {"phase": Phase.ACT.value, "attempt": attempt})
            await self._notify_phase(ctx, Phase.ACT, {"attempt": attempt})

            unavailable = self._unavailable_providers(selection)
            messages = self._build_messages(
                user_message, history, gathered, citations, unavailable, attempt_ctx
            )
            outcome = _ActOutcome()
            async for tool_event in self._act(messages, selection, outcome, ctx, attempt, usage):
                yield event(tool_event[0], tool_event[1])

            # ---------------- Verify ----------------
            machine.transition(LoopState.VERIFYING)
            yield event(EventType.PHASE_CHANGE, {"phase": Phase.VERIFY.value, "attempt": attempt})
            await self._notify_phase(ctx, Phase.VERIFY, {"attempt": attempt})

            result = verify(outcome.text, user_message, gathered.evidence)
            issues = [i.to_dict() for i in result.issues]
            records.append(AttemptRecord(attempt, result.passed, issues, outcome.tool_calls))
            self.audit.log_verification(request_id, attempt, result.passed, issues)
            yield event(EventType.VERIFICATION_RESULT, {
                "attempt": attempt,
                "passed": result.passed,
                "issues": issues,
            })
            logger.info(
                f"[Verify] {request_id} attempt {attempt}: passed={result.passed} "
                f"errors={len(result.errors)} warnings={len(result.warnings)}"
            )

            if result.passed:
                machine.transition(LoopState.RELEASED)
                unavailable = self._merge_unavailable(unavailable, outcome.failed_providers)
                content = outcome.text.strip()
                note = render_unavailable_note(unavailable)
                if note:
                    content = f"{content}\n\n{note}"
                response = AgentResponse(
                    content=content,
                    sources=list(citations.citations),
                    verified=True,
                    attempt_count=attempt,
                )
                for released in self._release(machine, response, ctx, started, usage, unavailable, records):
                    yield event(released[0], released[1])
                await self._notify_phase(ctx, Phase.FINAL, {"attempt": attempt, "verified": True})
                return

            attempt_ctx.verification_feedback = result.feedback
            attempt_ctx.previous_issue_count = len(result.issues)
            attempt_ctx.previous_response = outcome.text
            if attempt < self.config.max_attempts:
                machine.transition(LoopState.RETRYING)
                machine.transition(LoopState.GATHERING)
            else:
                machine.transition(LoopState.FAILED)

        logger.warning(
            f"[Loop] {request_id} no draft passed verification after "
            f"{self.config.max_attempts} attempts"
        )
        response = AgentResponse(
            content=graceful_failure_message(),
            sources=[],
            verified=False,
            attempt_count=self.config.max_attempts,
        )
        for released in self._release(machine, response, ctx, started, usage, [], records):
            yield event(released[0], released[1])
        await self._notify_phase(
            ctx, Phase.FINAL, {"attempt": self.config.max_attempts, "verified": False}
        )

    def _release(
        self,
        machine: LoopStateMachine,
        response: AgentResponse,
        ctx: RequestContext,
        started: float,
        usage: TokenUsage,
        unavailable: List[str],
        records: List[AttemptRecord],
    ):
        """Events that hand the final text to the caller; only legal in a terminal state."""
        if not machine.can_release:
            raise RuntimeError(f"cannot release text in state {machine.state.value}")

        duration_ms = int((time.monotonic() - started) * 1000)
        self.audit.log_request_complete(
            ctx.request_id,
            verified=response.verified,
            attempt_count=response.attempt_count,
            source_count=len(response.sources),
            duration_ms=duration_ms,
            unavailable_providers=unavailable,
        )
        logger.info(
            f"[Loop] {ctx.request_id} done: verified={response.verified} "
            f"attempts={response.attempt_count} sources={len(response.sources)} "
            f"tokens={usage.total} duration_ms={duration_ms}"
        )

        yield EventType.MESSAGE_START, {"verified": response.verified}
        yield EventType.MESSAGE_CHUNK, {"chunk": response.content}
        footer = format_citation_footer(response.sources)
        if footer:
            yield EventType.MESSAGE_CHUNK, {"chunk": footer}
        yield EventType.MESSAGE_END, {}
        yield EventType.EXECUTION_END, {
            "response": response,
            "duration_ms": duration_ms,
            "attempts": [asdict(r) for r in records],
            "token_usage": {"input": usage.input_tokens, "output": usage.output_tokens},
        }

    # ==========================================================================
    # GATHER
    # ==========================================================================

    async def _compact_history(
        self,
        history: Sequence[Message],
        user_message: str,
        request_id: str,
    ) -> Sequence[Message]:
        if not self.compactor.needs_compaction(history, user_message):
            return history
        result = await self.compactor.compact(history)
        self.audit.log_compaction(
            request_id,
            applied=result.applied,
            original_tokens=result.original_token_estimate,
            compacted_tokens=result.compacted_token_estimate,
        )
        return result.compacted_history

    async def _refresh_tools(self) -> None:
        failures = await self.registry.refresh_stale()
        for provider, error in failures.items():
            if error is not None:
                self.tracker.mark_failure(provider, f"discovery: {error}")

    async def _gather(self, user_message: str, history: Sequence[Message]) -> GatheredContext:
        try:
            return await self.gatherer.gather(user_message, history)
        except Exception as e:
            logger.warning(f"[Gather] failed, continuing without evidence: {e}")
            return GatheredContext(errors=[str(e)])

    def _unavailable_providers(self, selection: ToolSelection) -> List[str]:
        offered = {t.provider for t in selection.offered}
        unavailable = list(selection.unavailable_providers)
        for name in self.registry.provider_names:
            if name in offered or name in unavailable:
                continue
            if self.tracker.get(name).status == HealthStatus.UNHEALTHY:
                unavailable.append(name)
        return unavailable

    def _merge_unavailable(self, unavailable: List[str], failed: List[str]) -> List[str]:
        merged = list(unavailable)
        for name in failed:
            if name not in merged and self.tracker.get(name).status == HealthStatus.UNHEALTHY:
                merged.append(name)
        return merged

    # ==========================================================================
    # MESSAGE BUILDING
    # ==========================================================================

    def _build_messages(
        self,
        user_message: str,
        history: Sequence[Message],
        gathered: GatheredContext,
        citations: CitationRegistry,
        unavailable: Sequence[str],
        attempt_ctx: AttemptContext,
    ) -> List[Dict[str, Any]]:
        system_prompt = build_system_prompt(
            citations=citations.citations,
            history_snippets=gathered.history_snippets,
            preferences=gathered.preferences,
            unavailable=unavailable,
            custom_instructions=self.custom_instructions,
        )
        messages: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
        messages.extend(m.to_dict() for m in history)

        content = user_message
        if attempt_ctx.verification_feedback:
            retry = build_retry_prompt(
                attempt_ctx.previous_response or "",
                attempt_ctx.verification_feedback,
                attempt_number=attempt_ctx.attempt_number,
                max_attempts=self.config.max_attempts,
                excerpt_chars=self.config.retry_excerpt_chars,
            )
            content = f"{user_message}\n\n{retry}"
        messages.append({"role": "user", "content": content})
        return messages

    @staticmethod
    def _build_tool_result_message(
        tool_call_id: str,
        content: str,
        is_error: bool = False,
    ) -> Dict[str, Any]:
        if is_error:
            content = f"[ERROR] {content}"
        return {"role": "tool", "tool_call_id": tool_call_id, "content": content}

    # ==========================================================================
    # ACT
    # ==========================================================================

    async def _act(
        self,
        messages: List[Dict[str, Any]],
        selection: ToolSelection,
        outcome: _ActOutcome,
        ctx: RequestContext,
        attempt: int,
        usage: TokenUsage,
    ) -> AsyncIterator[tuple]:
        """Stream turns until the model answers in text; yields tool events."""
        tool_rounds = 0
        while True:
            offer_tools = bool(selection.schemas) and tool_rounds < self.config.max_tool_loops
            response = await self._stream_turn(messages, selection.schemas if offer_tools else None)
            if response.usage:
                usage.input_tokens += response.usage.prompt_tokens
                usage.output_tokens += response.usage.completion_tokens

            if not response.has_tool_calls or not offer_tools:
                if response.has_tool_calls:
                    logger.warning(
                        f"[Loop] {ctx.request_id} tool calls requested after the tool budget; ignoring"
                    )
                outcome.text = response.content
                return

            tool_rounds += 1
            messages.append(response.to_assistant_message())
            round_failed = False
            for tool_call in response.tool_calls:
                yield EventType.TOOL_CALL_START, {
                    "tool_name": tool_call.name,
                    "tool_call_id": tool_call.id,
                    "attempt": attempt,
                }
                await self._notify_phase(ctx, Phase.TOOL, {"attempt": attempt, "tool": tool_call.name})

                result, record = await self._execute_tool_call(tool_call, selection, ctx.request_id)
                outcome.tool_calls.append(record)
                round_failed = round_failed or not result.success
                if not result.success and record.provider and record.provider not in outcome.failed_providers:
                    outcome.failed_providers.append(record.provider)

                if result.success:
                    content = self.compactor.truncate_tool_result(self._stringify(result.output))
                    messages.append(self._build_tool_result_message(tool_call.id, content))
                else:
                    messages.append(self._build_tool_result_message(
                        tool_call.id,
                        format_error_for_model(tool_call.name, result.error),
                        is_error=True,
                    ))

                yield EventType.TOOL_RESULT, {
                    "tool_name": tool_call.name,
                    "tool_call_id": tool_call.id,
                    "success": result.success,
                    "duration_ms": result.duration_ms,
                    "attempts": result.attempts,
                    "error_code": result.error.code.value if result.error else None,
                }

            if round_failed:
                # Drop providers that just went unhealthy from the next turn
                selection = self.tool_policy.select(self.registry.snapshot())

            if tool_rounds >= self.config.max_tool_loops:
                logger.info(
                    f"[Loop] {ctx.request_id} tool budget of {self.config.max_tool_loops} "
                    "round(s) used; asking for a final answer"
                )

    async def _stream_turn(
        self,
        messages: List[Dict[str, Any]],
        tool_schemas: Optional[List[Dict[str, Any]]],
    ) -> LLMResponse:
        """Consume one completion stream into a single response.

        Each chunk must arrive within ``stream_idle_timeout`` seconds.
        """
        timeout = self.config.stream_idle_timeout
        stream = self.llm_client.stream_completion(messages=messages, tools=tool_schemas)
        iterator = stream.__aiter__()

        parts: List[str] = []
        tool_calls: Optional[List[ToolCall]] = None
        stop_reason: Optional[StopReason] = None
        usage = None
        try:
            while True:
                try:
                    chunk = await asyncio.wait_for(iterator.__anext__(), timeout=timeout)
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError:
                    raise TimeoutError(f"Completion stream idle for more than {timeout}s")
                if chunk.content:
                    parts.append(chunk.content)
                if chunk.tool_calls:
                    tool_calls = list(chunk.tool_calls)
                if chunk.stop_reason is not None:
                    stop_reason = chunk.stop_reason
                if chunk.usage is not None:
                    usage = chunk.usage
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        return LLMResponse(
            content="".join(parts),
            tool_calls=tool_calls,
            stop_reason=stop_reason or StopReason.END_TURN,
            usage=usage,
        )

    async def _execute_tool_call(
        self,
        tool_call: ToolCall,
        selection: ToolSelection,
        request_id: Optional[str],
    ) -> tuple:
        """Route one tool call through the gateway; never raises for tool failures."""
        tool = selection.provider_for(tool_call.name)
        args = tool_call.arguments if isinstance(tool_call.arguments, dict) else {}

        if tool is None:
            result = ToolExecutionResult(
                success=False,
                error=ToolError(ToolErrorCode.TOOL_NOT_FOUND, f"Unknown tool: {tool_call.name}"),
            )
            logger.warning(f"[Tool] model called unknown or withheld tool '{tool_call.name}'")
        elif UNPARSED_ARGUMENTS_KEY in args:
            result = ToolExecutionResult(
                success=False,
                error=ToolError(ToolErrorCode.TOOL_INVALID_INPUT, "Arguments were not valid JSON"),
            )
            logger.warning(f"[Tool] unparseable arguments for '{tool_call.name}'")
        else:
            result = await self.gateway.execute(tool.name, tool.provider, args, request_id=request_id)

        record = ToolCallRecord(
            name=tool_call.name,
            provider=tool.provider if tool else None,
            args_summary=sanitize_args(args),
            duration_ms=result.duration_ms,
            success=result.success,
            error_code=result.error.code.value if result.error else None,
        )
        return result, record

    @staticmethod
    def _stringify(output: Any) -> str:
        if output is None:
            return ""
        if isinstance(output, str):
            return output
        try:
            return json.dumps(output, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return str(output)

    # ==========================================================================
    # PHASE CALLBACK
    # ==========================================================================

    async def _notify_phase(self, ctx: RequestContext, phase: Phase, data: Dict[str, Any]) -> None:
        self.audit.log_phase(ctx.request_id, phase.value, data.get("attempt", 0))
        if ctx.on_phase is None:
            return
        try:
            result = ctx.on_phase(phase.value, data)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"[Loop] phase callback failed on {phase.value}: {e}")
