"""
Veriloop Models - Request-scoped data structures

Message and EvidenceItem are supplied to or produced by the loop and never
mutated afterwards. AttemptContext is owned by exactly one in-flight request.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    """One turn of conversation history."""
    role: MessageRole
    content: str

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=MessageRole.ASSISTANT, content=content)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(role=MessageRole(data["role"]), content=data.get("content") or "")

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class EvidenceKind(str, Enum):
    """Where a piece of evidence came from"""
    THREAD = "thread"
    FILE = "file"
    WEB = "web"
    TOOL = "tool"


@dataclass(frozen=True)
class EvidenceItem:
    """
    Retrieved context that may back a citation.

    Attributes:
        kind: Origin of the evidence
        reference: Identity used for citation dedup (URL, path, "web:forecast", ...)
        excerpt: Optional snippet shown to the model
        title: Optional human-readable title for the footer
    """
    kind: EvidenceKind
    reference: str
    excerpt: Optional[str] = None
    title: Optional[str] = None


@dataclass(frozen=True)
class Citation:
    """A numbered, deduplicated reference rendered to the user."""
    id: int
    kind: EvidenceKind
    title: str
    url: Optional[str] = None
    excerpt: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "title": self.title,
            "url": self.url,
            "excerpt": self.excerpt,
        }


@dataclass
class AttemptContext:
    """Per-request retry bookkeeping. Never shared across requests."""
    attempt_number: int = 1
    verification_feedback: Optional[str] = None
    previous_issue_count: Optional[int] = None
    previous_response: Optional[str] = None


PhaseCallback = Callable[[str, Dict[str, Any]], Union[None, Awaitable[None]]]


@dataclass
class RequestContext:
    """
    Caller-supplied context for one ``run()`` call.

    Attributes:
        history: Prior conversation, oldest first (the caller owns persistence)
        user_id: Optional user identity forwarded to preference lookups
        request_id: Correlation id for logs and audit events
        on_phase: Optional progress callback (gather/act/tool/verify/final)
        metadata: Free-form values echoed into audit events
    """
    history: List[Message] = field(default_factory=list)
    user_id: Optional[str] = None
    request_id: Optional[str] = None
    on_phase: Optional[PhaseCallback] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
