"""Context compaction: keep unbounded conversations inside the token budget.

Token counts are estimated as ceil(chars / 4). The estimate can be off by
roughly 20%, which the compaction threshold absorbs.

The threshold is exclusive: compaction triggers only when the estimate
strictly exceeds ``limit * ratio``.

When triggered, everything but the last ``keep_last_n`` messages is replaced
by one synthetic assistant message holding a structured summary. Compaction
fails open: any summarizer error returns the history unchanged.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence, Tuple, Union

from ..models import Message, MessageRole
from .loop_config import LoopConfig

logger = logging.getLogger(__name__)

SUMMARY_HEADER = "[Previous conversation summary]"

SUMMARY_SYSTEM_PROMPT = """You compress conversation history for an assistant that will continue the conversation.

Summarize the conversation below using exactly these sections:

## Preferences
How the user wants to be answered (tone, format, language, recurring constraints).

## Facts & Decisions
Facts established and decisions made, with names, numbers and dates kept exact.

## Open Items
Questions not yet answered and tasks still pending.

## Key Context
Anything else needed to understand the next message.

Be concise. Write "None" under a section with nothing to report. Do not invent details."""

Summarizer = Callable[[Sequence[Message]], Awaitable[str]]


def estimate_text_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def estimate_tokens(messages: Iterable[Union[Message, dict]]) -> int:
    """Estimate tokens for a message list (Message objects or role/content dicts)."""
    total_chars = 0
    for msg in messages:
        content: Any = msg.content if isinstance(msg, Message) else msg.get("content")
        if isinstance(content, str):
            total_chars += len(content)
    return math.ceil(total_chars / 4)


def should_compact(token_estimate: int, limit: int, ratio: float) -> bool:
    """True iff ``token_estimate`` strictly exceeds ``limit * ratio``."""
    return token_estimate > limit * ratio


@dataclass(frozen=True)
class CompactionResult:
    compacted_history: Tuple[Message, ...]
    summary: Optional[str]
    original_token_estimate: int
    compacted_token_estimate: int
    applied: bool


def _unchanged(history: Sequence[Message], tokens: int) -> CompactionResult:
    return CompactionResult(
        compacted_history=tuple(history),
        summary=None,
        original_token_estimate=tokens,
        compacted_token_estimate=tokens,
        applied=False,
    )


async def compact(
    history: Sequence[Message],
    keep_last_n: int,
    summarize: Summarizer,
) -> CompactionResult:
    """Summarize all but the last ``keep_last_n`` messages. Never raises."""
    original_tokens = estimate_tokens(history)
    if len(history) <= keep_last_n:
        return _unchanged(history, original_tokens)

    split = len(history) - keep_last_n
    older, tail = list(history[:split]), list(history[split:])

    try:
        summary = (await summarize(older) or "").strip()
    except Exception as e:
        logger.warning(f"[Compaction] summarizer failed, keeping full history: {e}")
        return _unchanged(history, original_tokens)

    if not summary:
        logger.warning("[Compaction] summarizer returned nothing, keeping full history")
        return _unchanged(history, original_tokens)

    compacted = (Message(MessageRole.ASSISTANT, f"{SUMMARY_HEADER}\n\n{summary}"), *tail)
    compacted_tokens = estimate_tokens(compacted)
    logger.info(
        f"[Compaction] {len(older)} messages summarized: "
        f"{original_tokens} -> {compacted_tokens} estimated tokens"
    )
    return CompactionResult(
        compacted_history=compacted,
        summary=summary,
        original_token_estimate=original_tokens,
        compacted_token_estimate=compacted_tokens,
        applied=True,
    )


def format_transcript(messages: Sequence[Message]) -> str:
    return "\n\n".join(f"{m.role.value.capitalize()}: {m.content}" for m in messages)


def build_llm_summarizer(
    llm_client: Any,
    timeout: float = 30.0,
    max_tokens: int = 1024,
) -> Summarizer:
    """Summarizer that reuses the completion provider with the structured prompt."""

    async def summarize(messages: Sequence[Message]) -> str:
        response = await asyncio.wait_for(
            llm_client.chat_completion(
                messages=[
                    {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                    {"role": "user", "content": format_transcript(messages)},
                ],
                config={"max_tokens": max_tokens, "temperature": 0.2},
            ),
            timeout=timeout,
        )
        return getattr(response, "content", "") or ""

    return summarize


class ContextCompactor:
    """Applies the configured budget to request history and tool results."""

    def __init__(self, config: LoopConfig, summarize: Optional[Summarizer] = None) -> None:
        self.config = config
        self.summarize = summarize

    def needs_compaction(self, history: Sequence[Message], extra_text: str = "") -> bool:
        tokens = estimate_tokens(history) + estimate_text_tokens(extra_text)
        return should_compact(
            tokens, self.config.context_token_limit, self.config.compaction_threshold
        )

    async def compact(self, history: Sequence[Message]) -> CompactionResult:
        """Summarize older turns, keeping ``keep_last_n`` verbatim. Never raises."""
        if self.summarize is None:
            return _unchanged(history, estimate_tokens(history))
        return await compact(history, self.config.keep_last_n, self.summarize)

    def truncate_tool_result(self, result: str) -> str:
        """Cap a single tool result, preferring a newline boundary."""
        max_chars = self.config.max_tool_result_chars
        if len(result) <= max_chars:
            return result
        cut = result[:max_chars]
        newline_pos = cut.rfind("\n")
        if newline_pos > max_chars // 2:
            cut = cut[: newline_pos + 1]
        return cut + "\n[...truncated]"
