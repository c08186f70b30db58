# tests/test_modes.py
"""
Tests for prompt modes and the ModeManager.
"""

import pytest
from pydantic import ValidationError

from memcore.exceptions import ConfigurationError
from memcore.modes import BUILTIN_MODES, DEFAULT_MODE_NAME, Mode, ModeManager


@pytest.fixture(autouse=True)
def reset_shared_manager():
    ModeManager.reset_instance()
    yield
    ModeManager.reset_instance()


class TestModeManager:

    def test_builtin_modes(self):
        manager = ModeManager()
        assert manager.available_modes() == ["code", "research"]
        assert manager.get_active_mode().name == DEFAULT_MODE_NAME == "code"
        assert "bugfix" in BUILTIN_MODES["code"].observation_types

    def test_start_in_other_mode(self):
        assert ModeManager(active_mode="research").get_active_mode().name == "research"

    def test_switch_mode(self):
        manager = ModeManager()
        mode = manager.set_active_mode("research")
        assert mode is manager.get_active_mode()
        assert "finding" in mode.observation_types

    def test_unknown_mode(self):
        manager = ModeManager()
        with pytest.raises(ConfigurationError) as exc_info:
            manager.set_active_mode("poetry")
        assert "code, research" in str(exc_info.value)
        # The previous mode stays active.
        assert manager.get_active_mode().name == "code"

    def test_unknown_initial_mode(self):
        with pytest.raises(ConfigurationError):
            ModeManager(active_mode="poetry")

    def test_register_mode(self):
        manager = ModeManager()
        manager.register_mode(Mode(name="ops", observation_types=["incident"], language="German"))
        assert manager.set_active_mode("ops").language == "German"
        # Registration is per manager.
        assert "ops" not in ModeManager().available_modes()

    def test_shared_instance(self):
        first = ModeManager.get_instance()
        assert ModeManager.get_instance() is first
        ModeManager.reset_instance()
        assert ModeManager.get_instance() is not first

    def test_modes_are_frozen(self):
        with pytest.raises(ValidationError):
            BUILTIN_MODES["code"].language = "French"
