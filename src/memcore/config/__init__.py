# src/memcore/config/__init__.py
"""
Configuration package for memcore.

Configuration files:
    - default_config.toml: Packaged defaults
    - User config: ~/.config/memcore/config.toml
    - Custom config: load_config(config_file_path=...)

Environment variables:
    - Prefix: MEMCORE_
    - Nested keys use double underscores: MEMCORE_BACKENDS__ANTHROPIC__MODEL
"""

from .loader import build_confy_config, load_config, load_default_config
from .models import (
    AgentSettings,
    BackendSettings,
    BridgeSettings,
    FallbackSettings,
    MemCoreConfig,
    QueueSettings,
    StorageSettings,
)

__all__ = [
    "AgentSettings",
    "BackendSettings",
    "BridgeSettings",
    "FallbackSettings",
    "MemCoreConfig",
    "QueueSettings",
    "StorageSettings",
    "build_confy_config",
    "load_config",
    "load_default_config",
]
