"""System prompts for the Veriloop orchestrator.

Modular prompt system: each section is a function that returns a string.
Sections are composed in build_system_prompt() from the request's evidence,
preferences and the capabilities currently unavailable.
"""

import re
from typing import List, Optional, Sequence

from ..models import Citation, Message


# ---------------------------------------------------------------------------
# Section renderers: each returns a prompt fragment or empty string
# ---------------------------------------------------------------------------

def render_preamble(assistant_name: str = "Veriloop") -> str:
    return (
        f"You are {assistant_name}, a helpful assistant. You answer the user's "
        "question directly, using the sources provided below and the tools "
        "available to you."
    )


def render_formatting_rules() -> str:
    return """
# Formatting

Your reply is shown in a chat client with its own markup:
- Bold is *single asterisks*. Never use **double asterisks**.
- Italic is _underscores_.
- Links are <https://example.com|link text>. Never use [text](url).
- Never start a line with > (no blockquotes). Use bullet points (•) instead.
- Keep it concise. Lead with the answer.
""".strip()


def render_citation_rules() -> str:
    return """
# Sources

- When you use a numbered source below, cite it inline with its marker, e.g. "It will rain tomorrow [2]."
- Only cite numbers that appear in the source list. Do not write your own source list; it is appended for you.
- If the sources do not cover the question, say so instead of guessing.
""".strip()


def render_honesty_rules() -> str:
    return """
# Accuracy

- Never fabricate tool results, numbers, dates or quotes.
- Avoid absolute language (always, never, guaranteed, 100%) unless a source states it.
- If a tool fails, answer with what you have and say what is missing.
""".strip()


def render_evidence(citations: Sequence[Citation], history_snippets: Sequence[Message] = ()) -> str:
    """Numbered source list plus relevant earlier turns."""
    if not citations and not history_snippets:
        return ""
    lines = ["# Available Sources", ""]
    for c in citations:
        header = f"[{c.id}] ({c.kind.value}) {c.title}"
        if c.url and c.url != c.title:
            header += f" - {c.url}"
        lines.append(header)
        if c.excerpt:
            lines.append(f"    {c.excerpt}")
    if history_snippets:
        lines.extend(["", "Relevant earlier messages:"])
        for m in history_snippets:
            lines.append(f"- {m.role.value}: {m.content}")
    return "\n".join(lines)


def render_preferences(preferences: Sequence[str]) -> str:
    if not preferences:
        return ""
    items = "\n".join(f"- {p}" for p in preferences)
    return f"# User Preferences\n\n{items}"


def render_unavailable_capabilities(names: Sequence[str]) -> str:
    if not names:
        return ""
    joined = ", ".join(names)
    return (
        "# Unavailable Capabilities\n\n"
        f"These capabilities are temporarily unavailable: {joined}. "
        "Answer as well as you can without them and do not pretend to have used them."
    )


# ---------------------------------------------------------------------------
# Composer: assembles the final system prompt
# ---------------------------------------------------------------------------

def build_system_prompt(
    *,
    citations: Sequence[Citation] = (),
    history_snippets: Sequence[Message] = (),
    preferences: Sequence[str] = (),
    unavailable: Sequence[str] = (),
    custom_instructions: str = "",
    assistant_name: str = "Veriloop",
) -> str:
    """Build the full system prompt for one attempt.

    Args:
        citations: Numbered sources the model may cite.
        history_snippets: Earlier turns relevant to the question.
        preferences: Preference lookup hits.
        unavailable: Display names of providers withheld for health.
        custom_instructions: Extra instructions appended at the end.

    Returns:
        Complete system prompt string.
    """
    sections: List[str] = [
        render_preamble(assistant_name),
        render_formatting_rules(),
        render_citation_rules(),
        render_honesty_rules(),
        render_preferences(preferences),
        render_unavailable_capabilities(unavailable),
        render_evidence(citations, history_snippets),
    ]
    if custom_instructions:
        sections.append(f"# Custom Instructions\n\n{custom_instructions}")
    return "\n\n".join(s for s in sections if s)


# ---------------------------------------------------------------------------
# User-facing notes
# ---------------------------------------------------------------------------

_NOTE_UNSAFE = re.compile(r"[*_>\[\]<|`]")


def render_unavailable_note(names: Sequence[str]) -> Optional[str]:
    """Italic note appended to a released answer when capabilities were withheld."""
    cleaned = [" ".join(_NOTE_UNSAFE.sub(" ", n).split()) for n in names]
    cleaned = [n for n in cleaned if n]
    if not cleaned:
        return None
    if len(cleaned) == 1:
        subject, verb = cleaned[0], "is"
    else:
        subject, verb = ", ".join(cleaned[:-1]) + " and " + cleaned[-1], "are"
    return f"_Note: {subject} {verb} currently unavailable, so this answer may be incomplete._"
