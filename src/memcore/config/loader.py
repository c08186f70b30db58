# src/memcore/config/loader.py
"""
Loads memcore configuration through ``confy``.

Layers, lowest precedence first:

1. ``default_config.toml`` packaged with this module.
2. The user file (explicit path, else ``~/.config/memcore/config.toml`` if present).
3. Environment variables ``MEMCORE_<SECTION>__<KEY>``.
4. An ``overrides`` dictionary given by the caller.

``confy`` merges the layers; the result is validated into :class:`MemCoreConfig`.
"""

import importlib.resources
import logging
import tomllib
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from confy.loader import Config as ConfyConfig
from pydantic import ValidationError

from ..exceptions import ConfigError
from .models import MemCoreConfig

logger = logging.getLogger(__name__)

DEFAULT_ENV_PREFIX = "MEMCORE"
USER_CONFIG_PATH = Path("~/.config/memcore/config.toml")


def load_default_config() -> Dict[str, Any]:
    """Reads the packaged defaults."""
    resource = importlib.resources.files("memcore.config").joinpath("default_config.toml")
    with resource.open("rb") as f:
        return tomllib.load(f)


def _dotted_overrides(overrides: Mapping[str, Any], parent: str = "") -> Dict[str, Any]:
    # confy applies overrides by dotted key; nested sections are flattened to leaves.
    flat: Dict[str, Any] = {}
    for key, value in overrides.items():
        path = f"{parent}.{key}" if parent else str(key)
        if isinstance(value, Mapping) and value:
            flat.update(_dotted_overrides(value, path))
        else:
            flat[path] = value
    return flat


def _resolve_user_file(config_file_path: Optional[str | Path]) -> Optional[str]:
    if config_file_path is not None:
        user_path = Path(config_file_path).expanduser()
        if not user_path.is_file():
            raise ConfigError(f"Config file not found: {user_path}")
        return str(user_path)
    user_path = USER_CONFIG_PATH.expanduser()
    return str(user_path) if user_path.is_file() else None


def build_confy_config(
    config_file_path: Optional[str | Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
) -> ConfyConfig:
    """
    Merges defaults, user file, environment and overrides into a confy ``Config``.

    Raises:
        ConfigError: If the explicit file is missing or confy cannot load a layer.
    """
    file_path = _resolve_user_file(config_file_path)
    try:
        config = ConfyConfig(
            defaults=load_default_config(),
            file_path=file_path,
            prefix=env_prefix,
            overrides_dict=_dotted_overrides(overrides or {}),
        )
    except Exception as e:
        raise ConfigError(f"memcore configuration loading failed: {e}") from e
    if file_path:
        logger.debug(f"Loaded user config from {file_path}")
    return config


def load_config(
    config_file_path: Optional[str | Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
) -> MemCoreConfig:
    """
    Builds and validates the effective configuration.

    Args:
        config_file_path: User TOML file. If given it must exist.
        overrides: Highest-precedence values, nested like the TOML file or
            keyed by dotted path (``{"agent.mode": "research"}``).
        env_prefix: Prefix of environment overrides.

    Raises:
        ConfigError: If a layer cannot be read or the merged result is invalid.
    """
    merged = build_confy_config(config_file_path, overrides, env_prefix).as_dict()
    try:
        return MemCoreConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"memcore configuration is invalid: {e}") from e
