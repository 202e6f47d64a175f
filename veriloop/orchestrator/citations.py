"""
Citation registry and citation-marker analysis.

Evidence is deduplicated by exact reference string into citations numbered
1..n in first-seen order. Building twice from the same evidence yields the
same ids, so a draft's ``[n]`` markers stay valid across retries.

The footer targets a ``<url|title>`` link syntax; titles and URLs are
sanitized separately so their characters cannot break out of the markup.
"""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from ..models import Citation, EvidenceItem

CITATION_MARKER = re.compile(r"\[(\d+)\]")

FACTUAL_PATTERNS: Tuple[re.Pattern, ...] = (
    re.compile(r"\b\d{4}\b"),
    re.compile(r"\d+(?:\.\d+)?%"),
    re.compile(r"\$[\d,]+"),
    re.compile(r"\baccording to\b", re.IGNORECASE),
    re.compile(r"\bstudies show\b", re.IGNORECASE),
    re.compile(r"\bresearch (?:indicates|shows|suggests)\b", re.IGNORECASE),
    re.compile(r"\bofficially\b", re.IGNORECASE),
)

_TITLE_REPLACEMENTS = (("|", "¦"), (">", "›"), ("<", "‹"))
_URL_REPLACEMENTS = (("|", "%7C"), (">", "%3E"), ("<", "%3C"))
_WHITESPACE = re.compile(r"\s+")

MAX_TITLE_CHARS = 120


@dataclass(frozen=True)
class CitationRegistry:
    """Ordered citations plus a reference -> id lookup for one response."""

    citations: Tuple[Citation, ...] = ()
    lookup: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def build(cls, evidence: Iterable[EvidenceItem]) -> "CitationRegistry":
        citations: List[Citation] = []
        lookup = {}
        for item in evidence:
            if item.reference in lookup:
                continue
            citation_id = len(citations) + 1
            lookup[item.reference] = citation_id
            citations.append(Citation(
                id=citation_id,
                kind=item.kind,
                title=item.title or item.reference,
                url=item.reference if _looks_like_url(item.reference) else None,
                excerpt=item.excerpt,
            ))
        return cls(citations=tuple(citations), lookup=MappingProxyType(lookup))

    def get(self, citation_id: int) -> Optional[Citation]:
        if 1 <= citation_id <= len(self.citations):
            return self.citations[citation_id - 1]
        return None

    def __len__(self) -> int:
        return len(self.citations)


@dataclass(frozen=True)
class CitationReport:
    """Outcome of scanning a draft for ``[n]`` markers."""

    has_uncited_claims: bool
    citation_count: int
    cited_ids: Tuple[int, ...]


def _looks_like_url(reference: str) -> bool:
    return reference.startswith(("http://", "https://"))


def detect_uncited_claims(text: str, citations: Sequence[Citation]) -> CitationReport:
    """Find valid citation markers in ``text``.

    A marker is valid when its id belongs to ``citations``. Claims count as
    uncited only when citations exist but no valid marker was found.
    """
    valid_ids = {c.id for c in citations}
    cited: List[int] = []
    for match in CITATION_MARKER.finditer(text):
        citation_id = int(match.group(1))
        if citation_id in valid_ids and citation_id not in cited:
            cited.append(citation_id)
    return CitationReport(
        has_uncited_claims=bool(citations) and not cited,
        citation_count=len(cited),
        cited_ids=tuple(cited),
    )


def detect_factual_claims(text: str) -> bool:
    """Whether ``text`` contains a strong factual claim (years, %, $, attributions)."""
    return any(p.search(text) for p in FACTUAL_PATTERNS)


def sanitize_link_text(title: str) -> str:
    cleaned = _WHITESPACE.sub(" ", title).strip()
    for old, new in _TITLE_REPLACEMENTS:
        cleaned = cleaned.replace(old, new)
    if len(cleaned) > MAX_TITLE_CHARS:
        cleaned = cleaned[: MAX_TITLE_CHARS - 1] + "…"
    return cleaned


def sanitize_url(url: str) -> str:
    cleaned = _WHITESPACE.sub("", url)
    for old, new in _URL_REPLACEMENTS:
        cleaned = cleaned.replace(old, new)
    return cleaned


def format_citation_footer(citations: Sequence[Citation]) -> str:
    """Render the sources footer; empty string when there is nothing to cite."""
    if not citations:
        return ""
    lines = []
    for c in citations:
        title = sanitize_link_text(c.title)
        if c.url:
            lines.append(f"• [{c.id}] <{sanitize_url(c.url)}|{title}>")
        else:
            lines.append(f"• [{c.id}] {title}")
    return "\n\n_Sources:_\n" + "\n".join(lines)
