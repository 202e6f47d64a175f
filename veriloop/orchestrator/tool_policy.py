"""
Tool policy filter layer for the orchestrator.

Decides which tools are offered to the completion provider on each attempt,
in two layers:

1. **Configured policy** -- global deny-list and optional allow-list, by
   model-facing tool name.
2. **Provider health** -- tools of unhealthy providers are withheld (unless
   the tracker grants a recovery probe); tools of degraded providers are
   demoted to the end of the list and marked as unreliable.

Usage::

    policy = ToolPolicyFilter(tracker)
    policy.set_global_deny({"shell__exec"})

    selection = policy.select(registry.snapshot())
    selection.schemas                 # OpenAI-format schemas, healthy first
    selection.unavailable_providers   # e.g. ["weather"]
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

from ..tools.health import HealthStatus, ToolHealthTracker
from ..tools.models import ToolDefinition

DEGRADED_PREFIX = "[Unreliable right now; prefer other tools] "


@dataclass
class ToolSelection:
    """Tools offered for one attempt and why others were held back."""

    offered: List[ToolDefinition] = field(default_factory=list)
    schemas: List[Dict] = field(default_factory=list)
    unavailable_providers: List[str] = field(default_factory=list)
    demoted_providers: List[str] = field(default_factory=list)

    def provider_for(self, exposed_name: str) -> Optional[ToolDefinition]:
        for tool in self.offered:
            if tool.exposed_name == exposed_name:
                return tool
        return None


class ToolPolicyFilter:
    """Configured allow/deny lists plus health-based exclusion and demotion."""

    def __init__(
        self,
        tracker: ToolHealthTracker,
        allow: Optional[Set[str]] = None,
        deny: Optional[Set[str]] = None,
    ) -> None:
        self.tracker = tracker
        self._global_allow: Optional[Set[str]] = set(allow) if allow is not None else None
        self._global_deny: Set[str] = set(deny or ())

    # ------------------------------------------------------------------
    # Configuration API
    # ------------------------------------------------------------------

    def set_global_deny(self, tool_names: Set[str]) -> None:
        """Set the global deny-list (tools never offered)."""
        self._global_deny = set(tool_names)

    def set_global_allow(self, tool_names: Optional[Set[str]]) -> None:
        """Set the global allow-list (if set, only these tools are offered)."""
        self._global_allow = set(tool_names) if tool_names is not None else None

    def is_tool_allowed(self, tool_name: str) -> bool:
        if tool_name in self._global_deny:
            return False
        if self._global_allow is not None and tool_name not in self._global_allow:
            return False
        return True

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select(self, tools: Sequence[ToolDefinition]) -> ToolSelection:
        """Filter and order ``tools`` for the next completion call.

        Each provider's health is read once so every tool of a provider gets
        the same treatment within one selection.
        """
        selection = ToolSelection()
        provider_state: Dict[str, HealthStatus] = {}
        healthy: List[ToolDefinition] = []
        demoted: List[ToolDefinition] = []

        for tool in tools:
            if not self.is_tool_allowed(tool.exposed_name):
                continue

            status = provider_state.get(tool.provider)
            if status is None:
                status = self.tracker.get(tool.provider).status
                if status == HealthStatus.UNHEALTHY and self.tracker.try_acquire_probe(tool.provider):
                    status = HealthStatus.DEGRADED
                provider_state[tool.provider] = status
                if status == HealthStatus.UNHEALTHY:
                    selection.unavailable_providers.append(tool.provider)
                elif status == HealthStatus.DEGRADED:
                    selection.demoted_providers.append(tool.provider)

            if status == HealthStatus.HEALTHY:
                healthy.append(tool)
            elif status == HealthStatus.DEGRADED:
                demoted.append(tool)

        selection.offered = healthy + demoted
        selection.schemas = [t.to_openai_schema() for t in healthy] + [
            t.to_openai_schema(DEGRADED_PREFIX) for t in demoted
        ]
        return selection
