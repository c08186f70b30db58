# tests/config/test_loader.py
"""
Tests for memcore configuration loading and validation.

Covers the packaged defaults, the user file, environment overrides
(``MEMCORE_SECTION__KEY``), caller overrides, and validation errors.
"""

import os

import pytest

from memcore.config import loader
from memcore.config.loader import build_confy_config, load_config, load_default_config
from memcore.config.models import BackendSettings, MemCoreConfig
from memcore.exceptions import ConfigError


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keeps a developer's config file and MEMCORE_ variables out of the tests."""
    monkeypatch.setattr(loader, "USER_CONFIG_PATH", tmp_path / "absent.toml")
    for name in list(os.environ):
        if name.startswith(("MEMCORE_", "MYAPP_")):
            monkeypatch.delenv(name)


class TestDefaults:

    def test_packaged_defaults(self):
        config = load_config()
        assert config.fallback.order == ["azure_openai", "anthropic"]
        assert config.agent.token_input_ratio == 0.7
        assert config.backends["azure_openai"].api_version == "2024-10-21"
        assert config.backends["azure_openai"].temperature == 0.3
        assert config.backends["anthropic"].max_context_tokens == 200000
        assert config.bridge.max_input_chars == 8000
        assert config.bridge.max_output_chars == 16000
        assert config.queue.idle_timeout_or_none is None

    def test_default_dict_is_plain_toml(self):
        defaults = load_default_config()
        assert defaults["memcore"]["log_level"] == "INFO"


class TestLayers:

    def test_user_file(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text('[fallback]\norder = ["anthropic"]\n\n[agent]\nmode = "research"\n')
        config = load_config(path)
        assert config.fallback.order == ["anthropic"]
        assert config.agent.mode == "research"
        # Untouched sections keep their defaults.
        assert config.backends["azure_openai"].model == "gpt-4o"

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / "nope.toml")

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.toml"
        path.write_text("[agent]\nmode = \"code\"\n")
        monkeypatch.setenv("MEMCORE_AGENT__MODE", "research")
        assert load_config(path).agent.mode == "research"

    def test_environment_nested_section(self, monkeypatch):
        monkeypatch.setenv("MEMCORE_BACKENDS__AZURE_OPENAI__MODEL", "gpt-4o-mini")
        config = load_config()
        assert config.backends["azure_openai"].model == "gpt-4o-mini"
        assert config.backends["azure_openai"].api_version == "2024-10-21"

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("MEMCORE_AGENT__MODE", "research")
        config = load_config(overrides={"agent": {"mode": "code", "token_input_ratio": 0.9}})
        assert config.agent.mode == "code"
        assert config.agent.token_input_ratio == 0.9

    def test_dotted_overrides(self):
        config = load_config(overrides={"agent.mode": "research", "fallback": {"order": ["anthropic"]}})
        assert config.agent.mode == "research"
        assert config.fallback.order == ["anthropic"]

    def test_custom_prefix(self, monkeypatch):
        monkeypatch.setenv("MYAPP_MEMCORE__LOG_LEVEL", "DEBUG")
        assert load_config(env_prefix="MYAPP").memcore.log_level == "DEBUG"

    def test_confy_config_dotted_access(self):
        config = build_confy_config(overrides={"bridge": {"max_input_chars": 100}})
        assert config.get("bridge.max_input_chars") == 100
        assert config.get("bridge.max_output_chars") == 16000


class TestValidation:

    def test_unknown_backend_in_order(self):
        with pytest.raises(ConfigError) as exc_info:
            load_config(overrides={"fallback": {"order": ["azure_openai", "ghost"]}})
        assert "ghost" in str(exc_info.value)

    def test_duplicate_backend_in_order(self):
        with pytest.raises(ConfigError):
            load_config(overrides={"fallback": {"order": ["anthropic", "anthropic"]}})

    def test_ratio_bounds(self):
        with pytest.raises(ConfigError):
            load_config(overrides={"agent": {"token_input_ratio": 1.2}})

    def test_dotted_get(self):
        config = load_config()
        assert config.get("backends.azure_openai.model") == "gpt-4o"
        assert config.get("agent.mode") == "code"
        assert config.get("missing.key", "fallback") == "fallback"


class TestBackendSettings:

    def test_endpoint_trailing_slash(self):
        assert BackendSettings(type="azure_openai", endpoint="https://x/").endpoint == "https://x"

    def test_inline_key_wins(self, monkeypatch):
        monkeypatch.setenv("SOME_KEY", "from-env")
        settings = BackendSettings(type="openai", api_key="inline", api_key_env="SOME_KEY")
        assert settings.resolve_api_key() == "inline"

    def test_key_from_env(self, monkeypatch):
        monkeypatch.setenv("SOME_KEY", "from-env")
        assert BackendSettings(type="openai", api_key_env="SOME_KEY").resolve_api_key() == "from-env"

    def test_no_key(self, monkeypatch):
        monkeypatch.delenv("SOME_KEY", raising=False)
        assert BackendSettings(type="openai", api_key_env="SOME_KEY").resolve_api_key() is None

    def test_empty_config_is_valid(self):
        assert MemCoreConfig().backends == {}
