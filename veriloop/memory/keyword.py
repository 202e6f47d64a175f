"""
Keyword knowledge store - a small in-process knowledge lookup.

Documents are plain dicts (``reference``, ``content`` and optionally
``title``, ``kind``, ``tags``, ``category``). ``search()`` ranks them by how
many query keywords they share and returns the best hits, which the Gather
phase turns into citable evidence.

Documents can be added directly or loaded from disk:

- ``.md`` / ``.txt`` files become one document each; the reference is the
  file path and the title is the first Markdown heading, if any.
- ``.yaml`` / ``.yml`` files hold a list of document dicts.

Usage::

    store = KeywordKnowledgeStore()
    store.add("web:forecast", "Oslo forecast: sunny, 18C", title="Forecast")
    store.load_path("docs/")
    hits = await store.search("weather in Oslo")
"""

import logging
import os
from typing import Any, Dict, Iterable, List, Optional

import yaml

from ..orchestrator.gather import tokenize

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = (".md", ".txt")
YAML_EXTENSIONS = (".yaml", ".yml")


def _first_heading(text: str) -> Optional[str]:
    for line in text.splitlines():
        line = line.strip()
        if line.startswith("#"):
            return line.lstrip("#").strip() or None
        if line:
            return None
    return None


class KeywordKnowledgeStore:
    """Keyword-overlap ``search()`` over in-memory documents.

    Args:
        max_results: Upper bound on hits per search
        documents: Initial documents
    """

    def __init__(self, max_results: int = 5, documents: Iterable[Dict[str, Any]] = ()):
        self.max_results = max_results
        self._documents: List[Dict[str, Any]] = []
        for doc in documents:
            self.add_document(doc)

    def __len__(self) -> int:
        return len(self._documents)

    def add(
        self,
        reference: str,
        content: str,
        title: Optional[str] = None,
        kind: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> None:
        doc: Dict[str, Any] = {"reference": reference, "content": content}
        if title:
            doc["title"] = title
        if kind:
            doc["kind"] = kind
        if tags:
            doc["tags"] = list(tags)
        self.add_document(doc)

    def add_document(self, doc: Dict[str, Any]) -> None:
        if not doc.get("reference") or not doc.get("content"):
            raise ValueError("knowledge documents need 'reference' and 'content'")
        self._documents.append(dict(doc))

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_path(self, path: str) -> int:
        """Load a file or every supported file under a directory. Returns the count added."""
        if os.path.isdir(path):
            added = 0
            for root, _dirs, files in os.walk(path):
                for filename in sorted(files):
                    if filename.endswith(TEXT_EXTENSIONS + YAML_EXTENSIONS):
                        added += self._load_file(os.path.join(root, filename))
            logger.info(f"[Knowledge] loaded {added} document(s) from {path}")
            return added
        if not os.path.exists(path):
            raise FileNotFoundError(f"Knowledge path not found: {path}")
        return self._load_file(path)

    def _load_file(self, path: str) -> int:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()

        if path.endswith(YAML_EXTENSIONS):
            data = yaml.safe_load(raw) or []
            if isinstance(data, dict):
                data = data.get("documents", [])
            added = 0
            for entry in data:
                if isinstance(entry, dict) and entry.get("reference") and entry.get("content"):
                    self.add_document(entry)
                    added += 1
                else:
                    logger.warning(f"[Knowledge] skipping malformed entry in {path}")
            return added

        if not raw.strip():
            return 0
        self.add(
            reference=path,
            content=raw.strip(),
            title=_first_heading(raw) or os.path.basename(path),
            kind="file",
        )
        return 1

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(self, query: str) -> List[Dict[str, Any]]:
        """Documents sharing keywords with ``query``, best first."""
        query_tokens = tokenize(query)
        if not query_tokens:
            return []

        scored = []
        for index, doc in enumerate(self._documents):
            searchable = " ".join([
                str(doc.get("title") or ""),
                str(doc["content"]),
                " ".join(str(t) for t in doc.get("tags") or ()),
                str(doc.get("category") or ""),
            ])
            score = len(query_tokens & tokenize(searchable))
            if score > 0:
                scored.append((score, index))

        scored.sort(key=lambda s: (-s[0], s[1]))
        return [dict(self._documents[i]) for _, i in scored[: self.max_results]]
