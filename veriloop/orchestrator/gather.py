"""
Evidence gathering for the Gather phase.

Collects relevant earlier turns from the supplied history and hits from the
configured knowledge lookups. Lookup failures are logged and skipped; the
phase never raises, it only returns less evidence.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from ..constants import STOPWORDS
from ..models import EvidenceItem, EvidenceKind, Message
from ..protocols import KnowledgeLookupProtocol
from .loop_config import LoopConfig

logger = logging.getLogger(__name__)

THREAD_REFERENCE = "conversation"
THREAD_TITLE = "Earlier in this conversation"

_TOKEN = re.compile(r"[a-z0-9']+")


def tokenize(text: str) -> Set[str]:
    """Case-folded words longer than 2 characters, stopwords removed."""
    return {w for w in _TOKEN.findall(text.lower()) if len(w) > 2 and w not in STOPWORDS}


def overlap_score(query_tokens: Set[str], text: str) -> int:
    if not query_tokens:
        return 0
    return len(query_tokens & tokenize(text))


def infer_kind(hit: Dict[str, Any]) -> EvidenceKind:
    kind = hit.get("kind")
    if kind:
        try:
            return EvidenceKind(kind)
        except ValueError:
            logger.debug(f"[Gather] unknown evidence kind '{kind}', inferring")
    reference = str(hit.get("reference", ""))
    if reference.startswith(("http://", "https://", "web:")):
        return EvidenceKind.WEB
    return EvidenceKind.FILE


def _clip(text: str, limit: int) -> str:
    text = text.strip()
    return text if len(text) <= limit else text[: limit - 3].rstrip() + "..."


@dataclass
class GatheredContext:
    """Everything the Act phase may show the model, plus what went wrong."""

    evidence: Tuple[EvidenceItem, ...] = ()
    history_snippets: List[Message] = field(default_factory=list)
    preferences: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class EvidenceGatherer:
    """Builds the evidence set for one request.

    Args:
        config: Loop configuration (snippet and excerpt caps)
        knowledge: Lookups whose hits become citable evidence
        preferences: Lookups whose hits only steer the system prompt
    """

    def __init__(
        self,
        config: LoopConfig,
        knowledge: Sequence[KnowledgeLookupProtocol] = (),
        preferences: Sequence[KnowledgeLookupProtocol] = (),
    ) -> None:
        self.config = config
        self.knowledge = list(knowledge)
        self.preferences = list(preferences)

    async def gather(self, user_message: str, history: Sequence[Message]) -> GatheredContext:
        result = GatheredContext()
        evidence: List[EvidenceItem] = []

        snippets = self.relevant_history(user_message, history)
        if snippets:
            result.history_snippets = snippets
            evidence.append(EvidenceItem(
                kind=EvidenceKind.THREAD,
                reference=THREAD_REFERENCE,
                title=THREAD_TITLE,
                excerpt=f"{len(snippets)} relevant earlier message(s)",
            ))

        for lookup in self.knowledge:
            for hit in await self._search(lookup, user_message, result.errors):
                item = self._to_evidence(hit)
                if item is not None:
                    evidence.append(item)

        for lookup in self.preferences:
            for hit in await self._search(lookup, user_message, result.errors):
                content = str(hit.get("content") or "").strip()
                if content:
                    result.preferences.append(_clip(content, self.config.max_excerpt_chars))

        result.evidence = tuple(evidence)
        logger.info(
            f"[Gather] evidence={len(result.evidence)}, history_snippets={len(snippets)}, "
            f"preferences={len(result.preferences)}, errors={len(result.errors)}"
        )
        return result

    def relevant_history(self, user_message: str, history: Sequence[Message]) -> List[Message]:
        """Earlier turns sharing keywords with the question, oldest first."""
        query = tokenize(user_message)
        scored = [
            (overlap_score(query, m.content), i)
            for i, m in enumerate(history)
        ]
        top = sorted((s for s in scored if s[0] > 0), key=lambda s: (-s[0], -s[1]))
        keep = sorted(i for _, i in top[: self.config.max_history_snippets])
        return [
            Message(history[i].role, _clip(history[i].content, self.config.max_excerpt_chars))
            for i in keep
        ]

    async def _search(
        self,
        lookup: KnowledgeLookupProtocol,
        query: str,
        errors: List[str],
    ) -> List[Dict[str, Any]]:
        name = type(lookup).__name__
        try:
            hits = await lookup.search(query)
        except Exception as e:
            logger.warning(f"[Gather] lookup {name} failed: {e}")
            errors.append(f"{name}: {e}")
            return []
        if not isinstance(hits, list):
            logger.warning(f"[Gather] lookup {name} returned {type(hits).__name__}, ignoring")
            return []
        return [h for h in hits if isinstance(h, dict)][: self.config.max_lookup_results]

    def _to_evidence(self, hit: Dict[str, Any]) -> Optional[EvidenceItem]:
        reference = hit.get("reference")
        if not reference:
            return None
        content = hit.get("content")
        return EvidenceItem(
            kind=infer_kind(hit),
            reference=str(reference),
            excerpt=_clip(str(content), self.config.max_excerpt_chars) if content else None,
            title=hit.get("title"),
        )
