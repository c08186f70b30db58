# src/memcore/config/models.py
"""
Pydantic models for memcore configuration validation.

The loader produces a plain merged dictionary (packaged defaults, user file,
environment). These models validate it and give the rest of the library typed
access to each section.
"""

import os
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ==============================================================================
# Backend Configuration
# ==============================================================================


class BackendSettings(BaseModel):
    """
    Settings of one ``[backends.<name>]`` section.

    Credentials may be given inline (``api_key``) or through the environment
    variable named by ``api_key_env``. Inline values win.
    """

    type: str = Field(..., description="Backend implementation key (azure_openai, openai, anthropic)")
    api_key: Optional[str] = Field(None, description="Inline API key")
    api_key_env: Optional[str] = Field(None, description="Environment variable holding the API key")
    endpoint: Optional[str] = Field(None, description="Service endpoint / base URL")
    model: Optional[str] = Field(None, description="Model or deployment name")
    api_version: Optional[str] = Field(None, description="API version (Azure only)")
    max_context_tokens: Optional[int] = Field(None, gt=0, description="Estimated token ceiling for a request")
    temperature: float = Field(0.3, ge=0.0, le=2.0)
    max_tokens: int = Field(4096, gt=0, description="Maximum completion tokens")
    timeout: float = Field(120.0, gt=0, description="Request timeout in seconds")

    model_config = ConfigDict(extra="allow")

    @field_validator("endpoint")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        if v:
            return v.rstrip("/")
        return v

    def resolve_api_key(self) -> Optional[str]:
        """Returns the inline key, else the value of ``api_key_env``, else None."""
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.environ.get(self.api_key_env) or None
        return None


class FallbackSettings(BaseModel):
    """Order in which backends are tried; the first one is the primary."""

    order: List[str] = Field(default_factory=list)


# ==============================================================================
# Orchestration Configuration
# ==============================================================================


class AgentSettings(BaseModel):
    """Settings of the session orchestrator."""

    token_input_ratio: float = Field(
        0.7, ge=0.0, le=1.0, description="Share of combined token usage counted as input"
    )
    mode: str = Field("code", description="Name of the active prompt mode")


class StorageSettings(BaseModel):
    """Location of the SQLite database shared by the queue and memory store."""

    path: str = Field("~/.local/share/memcore/memcore.db")

    @property
    def resolved_path(self) -> str:
        if self.path == ":memory:":
            return self.path
        return os.path.expanduser(self.path)


class QueueSettings(BaseModel):
    """Settings of the pending message queue."""

    idle_timeout: float = Field(0, ge=0, description="Seconds to wait on an empty queue; 0 waits for close")
    reset_stale_on_start: bool = True

    @property
    def idle_timeout_or_none(self) -> Optional[float]:
        return self.idle_timeout or None


class BridgeSettings(BaseModel):
    """Truncation limits applied to host payloads at the event bridge."""

    max_input_chars: int = Field(8000, gt=0)
    max_output_chars: int = Field(16000, gt=0)


class CoreSettings(BaseModel):
    log_level: str = "INFO"
    log_raw_payloads: bool = False


# ==============================================================================
# Root Configuration
# ==============================================================================


class MemCoreConfig(BaseModel):
    """
    Validated memcore configuration.

    Attributes:
        memcore: Library-wide flags (log level, raw payload logging).
        agent: Orchestrator settings.
        fallback: Backend order.
        backends: Backend sections keyed by section name.
        storage: SQLite location.
        queue: Pending message queue behaviour.
        bridge: Event bridge truncation limits.
        logging: Raw ``[logging]`` section passed to :func:`memcore.logging_config.configure_logging`.
    """

    memcore: CoreSettings = Field(default_factory=CoreSettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    fallback: FallbackSettings = Field(default_factory=FallbackSettings)
    backends: Dict[str, BackendSettings] = Field(default_factory=dict)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    bridge: BridgeSettings = Field(default_factory=BridgeSettings)
    logging: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_fallback_order(self) -> "MemCoreConfig":
        """Every name listed in ``fallback.order`` must have a backend section."""
        missing = [name for name in self.fallback.order if name not in self.backends]
        if missing:
            raise ValueError(f"fallback.order references unknown backend section(s): {', '.join(missing)}")
        if len(set(self.fallback.order)) != len(self.fallback.order):
            raise ValueError("fallback.order must not list a backend twice.")
        return self

    def get(self, key: str, default: Any = None) -> Any:
        """
        Looks up a dotted key (``"agent.mode"``, ``"backends.openai.model"``).

        Returns ``default`` if any part of the path is missing.
        """
        current: Any = self.model_dump()
        for part in key.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default
        return current
