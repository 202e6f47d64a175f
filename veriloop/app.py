"""
Veriloop Application - Single entry point for the verified-answer loop.

Usage:
    from veriloop import Veriloop

    app = Veriloop("config.yaml")

    response = await app.chat("What's the weather in Oslo?")
    print(response.render())

    async for event in app.stream("What's the weather in Oslo?"):
        ...
"""

import logging
import os
import re
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import yaml

from .config import AppConfig
from .models import Message, RequestContext
from .result import AgentResponse
from .streaming.models import AgentEvent

logger = logging.getLogger(__name__)


def _load_config(path: str) -> dict:
    """Read YAML config file with ${VAR} environment variable substitution."""
    with open(path, "r", encoding="utf-8") as f:
        raw = f.read()

    def _replace_env(match):
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ValueError(
                f"Environment variable '{var_name}' not set "
                f"(referenced in config file '{path}')"
            )
        return value

    resolved = re.sub(r"\$\{(\w+)\}", _replace_env, raw)
    return yaml.safe_load(resolved) or {}


class Veriloop:
    """
    Veriloop application entry point.

    Sync constructor reads and validates config; clients are built lazily
    on the first chat() or stream() call.

    Args:
        config: Path to YAML configuration file.
        llm_client: Optional completion provider overriding ``llm`` config.

    Example:
        app = Veriloop("config.yaml")
        app.add_tool(get_forecast)
        response = await app.chat("What's the weather in Oslo?")
    """

    def __init__(self, config: str, llm_client: Any = None):
        self._config = AppConfig.model_validate(_load_config(config))
        self._initialized = False
        self._llm_client = llm_client

        self._registry = None
        self._tracker = None
        self._audit = None
        self._mcp = None
        self._local_tools = None
        self._orchestrator = None
        self._tools: List[tuple] = []

    @property
    def config(self) -> AppConfig:
        return self._config

    def add_tool(self, func: Callable, name: Optional[str] = None, description: Optional[str] = None) -> None:
        """Expose a Python callable to the model under the ``local`` provider."""
        self._tools.append((func, name, description))
        if self._local_tools is not None:
            self._local_tools.add(func, name=name, description=description)

    async def _ensure_initialized(self) -> None:
        """Lazy initialization, runs once on first chat()/stream() call."""
        if self._initialized:
            return

        cfg = self._config

        # 1. LLM client
        if self._llm_client is None:
            from .llm.base import LLMConfig
            from .llm.litellm_client import LiteLLMClient
            llm_config = LLMConfig(
                model=cfg.llm.model,
                api_key=cfg.llm.api_key,
                base_url=cfg.llm.base_url,
                temperature=cfg.llm.temperature,
                max_tokens=cfg.llm.max_tokens,
                timeout=cfg.llm.timeout,
            )
            self._llm_client = LiteLLMClient(config=llm_config, provider_name=cfg.llm.provider)
            logger.info(f"LLM client: provider={cfg.llm.provider}, model={cfg.llm.model}")

        # 2. Audit, health, registry
        from .orchestrator.audit_logger import AuditLogger
        from .tools.health import ToolHealthTracker
        from .tools.registry import ToolRegistry
        self._audit = AuditLogger()
        self._tracker = ToolHealthTracker(
            degraded_threshold=cfg.health.degraded_threshold,
            unhealthy_threshold=cfg.health.unhealthy_threshold,
            probe_interval=cfg.health.probe_interval,
            on_transition=self._audit.log_health_transition,
        )
        self._registry = ToolRegistry(discovery_ttl=cfg.tools.discovery_ttl)

        # 3. Local tools
        from .tools.local import FunctionToolProvider
        self._local_tools = FunctionToolProvider("local")
        # Rebuilt from every add_tool() so tools survive shutdown()
        for func, name, description in self._tools:
            self._local_tools.add(func, name=name, description=description)
        self._registry.add_provider(self._local_tools)

        # 4. MCP servers (discovered on the first request's refresh)
        from .mcp import MCPManager, MCPServerConfig
        self._mcp = MCPManager(self._registry)
        for name, server in cfg.mcp_servers.items():
            self._mcp.add_server(MCPServerConfig(
                name=name,
                url=server.url,
                headers=dict(server.headers),
                bearer_token=server.bearer_token,
                timeout=server.timeout,
                enabled=server.enabled,
            ))
        if self._mcp.server_names:
            logger.info(f"MCP servers: {', '.join(self._mcp.server_names)}")

        # 5. Knowledge
        loop_config = cfg.loop.to_loop_config()
        knowledge = self._build_store(cfg.knowledge.paths, loop_config.max_lookup_results)
        preferences = self._build_store(cfg.knowledge.preference_paths, loop_config.max_lookup_results)

        # 6. Orchestrator
        from .orchestrator import Orchestrator, ToolPolicyFilter
        policy = ToolPolicyFilter(
            self._tracker,
            allow=set(cfg.tools.allow) if cfg.tools.allow is not None else None,
            deny=set(cfg.tools.deny),
        )
        self._orchestrator = Orchestrator(
            self._llm_client,
            registry=self._registry,
            tracker=self._tracker,
            knowledge=[knowledge] if knowledge is not None else [],
            preferences=[preferences] if preferences is not None else [],
            config=loop_config,
            audit=self._audit,
            tool_policy=policy,
            custom_instructions=cfg.system_prompt,
        )

        self._initialized = True
        logger.info("Veriloop initialized")

    @staticmethod
    def _build_store(paths: List[str], max_results: int):
        if not paths:
            return None
        from .memory import KeywordKnowledgeStore
        store = KeywordKnowledgeStore(max_results=max_results)
        for path in paths:
            store.load_path(path)
        return store

    @staticmethod
    def _build_context(history: Optional[List[Any]], **kwargs) -> RequestContext:
        messages = [
            m if isinstance(m, Message) else Message.from_dict(m)
            for m in history or []
        ]
        return RequestContext(history=messages, **kwargs)

    async def chat(
        self,
        message: str,
        history: Optional[List[Any]] = None,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AgentResponse:
        """Answer ``message`` given the caller-owned ``history``."""
        await self._ensure_initialized()
        ctx = self._build_context(history, user_id=user_id, metadata=metadata or {})
        return await self._orchestrator.run(message, ctx)

    async def stream(
        self,
        message: str,
        history: Optional[List[Any]] = None,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[AgentEvent]:
        """Stream progress events and the released answer."""
        await self._ensure_initialized()
        ctx = self._build_context(history, user_id=user_id, metadata=metadata or {})
        async for event in self._orchestrator.stream_message(message, ctx):
            yield event

    async def shutdown(self) -> None:
        """Close MCP connections and the LLM client."""
        if not self._initialized:
            return
        try:
            if self._mcp:
                await self._mcp.close()
            close = getattr(self._llm_client, "close", None)
            if close is not None:
                await close()
        except Exception as e:
            logger.warning(f"Error during shutdown: {e}")
        finally:
            self._initialized = False
            self._orchestrator = None
            self._mcp = None
            self._local_tools = None
            logger.info("Veriloop shut down")
