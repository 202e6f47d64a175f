"""
Shared constants for the Veriloop request core.

Centralizes values that are needed by the orchestrator, the verification
engine and the tool layer to avoid circular imports and duplication.
"""

from typing import Tuple

# ── Attempt budget ──

MAX_ATTEMPTS = 3
"""Generate/verify attempts per request before the graceful-failure response."""

# ── Tool naming ──

MCP_TOOL_SEPARATOR = "__"
"""Separator between server and tool in model-facing MCP tool names."""

# ── Graceful failure ──

GRACEFUL_FAILURE_REASONS: Tuple[str, ...] = (
    "the question may need information I don't have access to",
    "I may need more context to give an accurate answer",
    "my draft answers did not pass my own quality checks",
)

GRACEFUL_FAILURE_SUGGESTIONS: Tuple[str, ...] = (
    "Try rephrasing your question",
    "Add more specific details",
    "Split a complex question into smaller parts",
)

# ── Redaction ──

SENSITIVE_KEY_MARKERS: Tuple[str, ...] = (
    "password",
    "token",
    "secret",
    "apikey",
    "auth",
    "credential",
)
"""Redact a key containing any of these anywhere (case-insensitive)."""
SENSITIVE_KEY_WORDS: Tuple[str, ...] = ("key",)
"""Redact a key with one of these as a whole segment (``api_key``, ``apiKey``)."""
REDACTED = "[REDACTED]"

# ── Tool arguments ──

UNPARSED_ARGUMENTS_KEY = "__raw_arguments__"
"""Marks tool arguments whose JSON could not be decoded from the stream."""

# ── Keyword matching ──

STOPWORDS = frozenset({
    "a", "an", "the", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "can", "to", "of", "in", "for", "on",
    "with", "at", "by", "from", "as", "into", "through", "during", "before",
    "after", "above", "below", "between", "under", "again", "further", "then",
    "once", "here", "there", "when", "where", "why", "how", "all", "each",
    "few", "more", "most", "other", "some", "such", "no", "nor", "not", "only",
    "own", "same", "so", "than", "too", "very", "just", "also", "now", "and",
    "but", "or", "if", "what", "which", "who", "whom", "this", "that", "these",
    "those", "am", "it", "its", "i", "me", "my", "you", "your", "he", "she",
    "they", "them", "we", "us", "our", "hi", "hello", "please", "thanks",
    "thank", "about", "tell", "know", "want", "like",
})
