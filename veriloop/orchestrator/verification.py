"""
Verification rule engine.

Every draft is scored by a fixed, ordered set of pure rules before it can be
released. Error-severity failures block release and drive a retry; warnings
are passed back to the model as feedback but never block.

Usage::

    result = verify("It is sunny [1].", "What is the weather?", evidence)
    if not result.passed:
        prompt = build_retry_prompt(draft, result.feedback, attempt_number=2)
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Sequence, Tuple

from ..constants import (
    GRACEFUL_FAILURE_REASONS,
    GRACEFUL_FAILURE_SUGGESTIONS,
    MAX_ATTEMPTS,
    STOPWORDS,
)
from ..models import EvidenceItem
from .citations import CitationRegistry, detect_factual_claims, detect_uncited_claims


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class VerificationIssue:
    rule_name: str
    severity: Severity
    feedback: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "rule": self.rule_name,
            "severity": self.severity.value,
            "feedback": self.feedback,
        }


@dataclass(frozen=True)
class VerificationResult:
    """Issues found in one pass plus the overall verdict."""

    passed: bool
    issues: Tuple[VerificationIssue, ...] = ()

    @property
    def errors(self) -> Tuple[VerificationIssue, ...]:
        return tuple(i for i in self.issues if i.severity == Severity.ERROR)

    @property
    def warnings(self) -> Tuple[VerificationIssue, ...]:
        return tuple(i for i in self.issues if i.severity == Severity.WARNING)

    @property
    def feedback(self) -> str:
        """All issues as one string, errors first, for the retry prompt."""
        ordered = self.errors + self.warnings
        return "\n".join(f"- [{i.rule_name}] {i.feedback}" for i in ordered)


@dataclass(frozen=True)
class _Subject:
    text: str
    user_message: str
    evidence: Tuple[EvidenceItem, ...]


@dataclass(frozen=True)
class VerificationRule:
    name: str
    severity: Severity
    feedback: str
    check: Callable[[_Subject], bool]


# ----------------------------------------------------------------------
# Rule helpers
# ----------------------------------------------------------------------

_WORD = re.compile(r"[a-z0-9']+")
_BOLD = re.compile(r"\*\*[^*]+\*\*")
_LINK = re.compile(r"\[[^\]]+\]\([^)]+\)")
_BLOCKQUOTE = re.compile(r"^>", re.MULTILINE)
_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_FOOTER = re.compile(r"_Sources:_|\bSources:", re.IGNORECASE)
_STRONG_CLAIMS = re.compile(
    r"\b(?:definitely|certainly|always|never|guaranteed|scientists agree|"
    r"studies show|research proves|data shows|according to experts)\b|100%",
    re.IGNORECASE,
)


def extract_keywords(text: str) -> List[str]:
    """Significant words: longer than 3 characters and not a stopword."""
    return [w for w in _WORD.findall(text.lower()) if len(w) > 3 and w not in STOPWORDS]


def _addresses_question(s: _Subject) -> bool:
    keywords = extract_keywords(s.user_message)
    if not keywords:
        return True
    lowered = s.text.lower()
    return any(k in lowered for k in keywords)


def _cites_sources(s: _Subject) -> bool:
    if not s.evidence or not detect_factual_claims(s.text):
        return True
    if _FOOTER.search(s.text):
        return True
    citations = CitationRegistry.build(s.evidence).citations
    return detect_uncited_claims(s.text, citations).citation_count > 0


def _has_repeated_phrase(text: str) -> bool:
    words = _WORD.findall(text.lower())
    first_seen: Dict[Tuple[str, ...], int] = {}
    for i in range(len(words) - 2):
        phrase = tuple(words[i:i + 3])
        if len(" ".join(phrase)) <= 10:
            continue
        if phrase in first_seen and i - first_seen[phrase] >= 3:
            return True
        first_seen.setdefault(phrase, i)
    return False


def _is_coherent(s: _Subject) -> bool:
    sentences = [p.strip() for p in _SENTENCE_SPLIT.split(s.text) if p.strip()]
    if len(sentences) >= 2:
        short = sum(1 for p in sentences if len(p) < 10)
        if short > len(sentences) / 2:
            return False
    return not _has_repeated_phrase(s.text)


def _no_unsupported_absolutes(s: _Subject) -> bool:
    if s.evidence:
        return True
    return not _STRONG_CLAIMS.search(s.text)


RULES: Tuple[VerificationRule, ...] = (
    VerificationRule(
        "not-empty", Severity.ERROR,
        "The response is empty. Write an answer.",
        lambda s: bool(s.text.strip()),
    ),
    VerificationRule(
        "minimum-length", Severity.WARNING,
        "The response is too short for the question asked.",
        lambda s: len(s.text.strip()) >= min(len(s.user_message), 50),
    ),
    VerificationRule(
        "no-illegal-bold-markup", Severity.ERROR,
        "Use *single asterisks* for bold, not **double asterisks**.",
        lambda s: not _BOLD.search(s.text),
    ),
    VerificationRule(
        "no-illegal-link-markup", Severity.ERROR,
        "Write links as <url|text>, not [text](url).",
        lambda s: not _LINK.search(s.text),
    ),
    VerificationRule(
        "no-blockquotes", Severity.ERROR,
        "Do not start lines with >. Use bullet points instead of blockquotes.",
        lambda s: not _BLOCKQUOTE.search(s.text),
    ),
    VerificationRule(
        "addresses-question", Severity.WARNING,
        "The response does not appear to address the question asked.",
        _addresses_question,
    ),
    VerificationRule(
        "cites-sources", Severity.WARNING,
        "Factual claims are not cited. Add [n] markers for the sources you used.",
        _cites_sources,
    ),
    VerificationRule(
        "response-coherence", Severity.WARNING,
        "The response reads as fragmented or repeats itself. Write complete, non-repetitive sentences.",
        _is_coherent,
    ),
    VerificationRule(
        "factual-claim-check", Severity.WARNING,
        "Absolute claims (always, never, 100%, guaranteed) are made without supporting sources. Soften them or state uncertainty.",
        _no_unsupported_absolutes,
    ),
)


def verify(
    text: str,
    user_message: str,
    evidence: Sequence[EvidenceItem] = (),
    rules: Sequence[VerificationRule] = RULES,
) -> VerificationResult:
    """Score ``text``; fails iff at least one error-severity rule fails."""
    subject = _Subject(text=text or "", user_message=user_message or "", evidence=tuple(evidence))
    issues = tuple(
        VerificationIssue(rule.name, rule.severity, rule.feedback)
        for rule in rules
        if not rule.check(subject)
    )
    passed = not any(i.severity == Severity.ERROR for i in issues)
    return VerificationResult(passed=passed, issues=issues)


def build_retry_prompt(
    previous_response: str,
    feedback: str,
    attempt_number: int,
    max_attempts: int = MAX_ATTEMPTS,
    excerpt_chars: int = 500,
) -> str:
    """Instruction telling the model which named issues to fix on the next attempt."""
    excerpt = previous_response[:excerpt_chars]
    if len(previous_response) > excerpt_chars:
        excerpt += "..."
    return (
        f"[Verification failed - attempt {attempt_number}/{max_attempts}]\n\n"
        f"Your previous response failed these checks:\n{feedback}\n\n"
        "Fix every issue named above and answer the question again. Remember:\n"
        "• Formatting: *bold*, _italic_, <url|text>\n"
        "• Never use **bold**, [text](url) or lines starting with >\n"
        "• Cite the sources you use with [n] markers\n\n"
        f"Previous response:\n---\n{excerpt}\n---\n\n"
        "Write the corrected response only."
    )


def graceful_failure_message() -> str:
    """Fixed apology returned when no attempt passed verification."""
    reasons = "; ".join(GRACEFUL_FAILURE_REASONS)
    suggestions = "\n".join(f"• {s}" for s in GRACEFUL_FAILURE_SUGGESTIONS)
    return (
        "Sorry, I couldn't put together an answer I'm confident in. "
        f"Possible reasons: {reasons}.\n\n"
        f"You could:\n{suggestions}"
    )
