"""
Veriloop Result - The authoritative response of one request
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from .models import Citation


@dataclass
class AgentResponse:
    """
    Result of ``Orchestrator.run()``.

    Attributes:
        content: Released text (verified draft, or the graceful-failure notice)
        sources: Citations backing the content; empty on graceful failure
        verified: True only if a draft passed verification
        attempt_count: Attempts used, 1..MAX_ATTEMPTS
    """
    content: str
    sources: List[Citation] = field(default_factory=list)
    verified: bool = False
    attempt_count: int = 0

    def render(self) -> str:
        """Content followed by the citation footer, ready for a transport."""
        from .orchestrator.citations import format_citation_footer
        return self.content + format_citation_footer(self.sources)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "sources": [c.to_dict() for c in self.sources],
            "verified": self.verified,
            "attempt_count": self.attempt_count,
        }
