"""
Veriloop - verified, cited answers from a tool-using LLM

Veriloop wraps a completion provider in a Gather-Act-Verify loop: evidence
is gathered and numbered, the model drafts an answer with health-checked
tools, and the draft is verified before anything reaches the user. Failed
drafts are retried with feedback; after three attempts a fixed, honest
failure notice is returned instead.

Key Features:
- Bounded retries with rule-based verification
- Numbered citations with a sources footer
- Context compaction for long conversations
- Tool health tracking (degraded / unhealthy providers, recovery probes)
- MCP tool servers over HTTP and local Python tools
- Streaming progress events

Quick Start:
    from veriloop import Veriloop

    app = Veriloop("config.yaml")
    response = await app.chat("What's the weather in Oslo?")
    print(response.render())

Embedding the loop directly:
    from veriloop import Orchestrator, RequestContext
    from veriloop.llm import LiteLLMClient

    client = LiteLLMClient(model="gpt-4o", provider_name="openai")
    orchestrator = Orchestrator(client, knowledge=[store])
    response = await orchestrator.run("...", RequestContext(history=history))

Streaming:
    async for event in app.stream("What's the weather in Oslo?"):
        if event.type == EventType.MESSAGE_CHUNK:
            print(event.data["chunk"], end="")
"""

__version__ = "0.1.0"

from .constants import MAX_ATTEMPTS
from .models import (
    Message,
    MessageRole,
    EvidenceItem,
    EvidenceKind,
    Citation,
    AttemptContext,
    RequestContext,
)
from .result import AgentResponse
from .protocols import LLMClientProtocol, KnowledgeLookupProtocol, ToolProviderProtocol
from .streaming import AgentEvent, EventType, Phase
from .orchestrator import LoopConfig, Orchestrator, AuditLogger
from .tools import FunctionToolProvider, ToolHealthTracker, ToolRegistry
from .memory import KeywordKnowledgeStore
from .app import Veriloop

__all__ = [
    "__version__",
    "MAX_ATTEMPTS",
    "Message",
    "MessageRole",
    "EvidenceItem",
    "EvidenceKind",
    "Citation",
    "AttemptContext",
    "RequestContext",
    "AgentResponse",
    "LLMClientProtocol",
    "KnowledgeLookupProtocol",
    "ToolProviderProtocol",
    "AgentEvent",
    "EventType",
    "Phase",
    "LoopConfig",
    "Orchestrator",
    "AuditLogger",
    "FunctionToolProvider",
    "ToolHealthTracker",
    "ToolRegistry",
    "KeywordKnowledgeStore",
    "Veriloop",
]
