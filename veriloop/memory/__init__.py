"""
Veriloop Knowledge - keyword lookups feeding the Gather phase

Example:
    from veriloop.memory import KeywordKnowledgeStore

    store = KeywordKnowledgeStore()
    store.load_path("knowledge/")
    hits = await store.search("refund policy")
"""

from .keyword import KeywordKnowledgeStore

__all__ = ["KeywordKnowledgeStore"]
