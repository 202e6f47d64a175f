"""Pydantic models validating the Veriloop YAML configuration."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .constants import MAX_ATTEMPTS, MCP_TOOL_SEPARATOR
from .orchestrator.loop_config import LoopConfig


class LLMSettings(BaseModel):
    provider: str
    model: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 4096
    timeout: int = 60


class LoopSettings(BaseModel):
    max_attempts: int = Field(MAX_ATTEMPTS, ge=1)
    max_tool_loops: int = Field(5, ge=0)
    tool_execution_timeout: float = Field(30.0, gt=0)
    tool_max_retries: int = Field(2, ge=0)
    tool_retry_backoff: float = Field(1.0, ge=0)
    tool_rate_limit_backoff: float = Field(30.0, ge=0)
    stream_idle_timeout: float = Field(60.0, gt=0)
    summarizer_timeout: float = Field(30.0, gt=0)
    context_token_limit: int = Field(100_000, gt=0)
    compaction_threshold: float = Field(0.8, gt=0, le=1)
    keep_last_n: int = Field(10, ge=0)
    max_summary_tokens: int = Field(1024, gt=0)
    max_tool_result_chars: int = Field(20_000, gt=0)
    max_history_snippets: int = Field(5, ge=0)
    max_excerpt_chars: int = Field(500, gt=0)
    max_lookup_results: int = Field(5, ge=0)
    retry_excerpt_chars: int = Field(500, ge=0)

    def to_loop_config(self) -> LoopConfig:
        return LoopConfig(**self.model_dump())


class HealthSettings(BaseModel):
    degraded_threshold: int = Field(1, ge=1)
    unhealthy_threshold: int = Field(3, ge=1)
    probe_interval: Optional[float] = Field(60.0, gt=0)

    @model_validator(mode="after")
    def _threshold_order(self) -> "HealthSettings":
        if self.unhealthy_threshold < self.degraded_threshold:
            raise ValueError("unhealthy_threshold must be >= degraded_threshold")
        return self


class ToolSettings(BaseModel):
    allow: Optional[List[str]] = None
    deny: List[str] = Field(default_factory=list)
    discovery_ttl: float = Field(300.0, gt=0)


class MCPServerSettings(BaseModel):
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    bearer_token: Optional[str] = None
    timeout: float = Field(30.0, gt=0)
    enabled: bool = True


class KnowledgeSettings(BaseModel):
    paths: List[str] = Field(default_factory=list)
    preference_paths: List[str] = Field(default_factory=list)


class AppConfig(BaseModel):
    llm: LLMSettings
    loop: LoopSettings = Field(default_factory=LoopSettings)
    health: HealthSettings = Field(default_factory=HealthSettings)
    tools: ToolSettings = Field(default_factory=ToolSettings)
    mcp_servers: Dict[str, MCPServerSettings] = Field(default_factory=dict)
    knowledge: KnowledgeSettings = Field(default_factory=KnowledgeSettings)
    system_prompt: str = ""

    @field_validator("mcp_servers")
    @classmethod
    def _server_names(cls, servers: Dict[str, MCPServerSettings]) -> Dict[str, MCPServerSettings]:
        for name in servers:
            if not name or MCP_TOOL_SEPARATOR in name:
                raise ValueError(f"MCP server name '{name}' must be non-empty without '{MCP_TOOL_SEPARATOR}'")
        return servers
