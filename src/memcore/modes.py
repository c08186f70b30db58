# src/memcore/modes.py
"""
Prompt modes.

A mode tunes the extraction prompts to the kind of work being captured: which
observation types the backend may emit, which concept tags it should use, and
the language the records should be written in. The active mode is read on
every prompt build, so switching modes takes effect on the next turn.
"""

import logging
import threading
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class Mode(BaseModel):
    """A named prompt configuration."""
    name: str
    description: str = ""
    observation_types: List[str] = Field(default_factory=list)
    concepts: List[str] = Field(default_factory=list)
    language: str = "English"

    model_config = ConfigDict(frozen=True)


CODE_MODE = Mode(
    name="code",
    description="Software development sessions: changes, fixes, and what was learned about the codebase.",
    observation_types=["bugfix", "feature", "refactor", "change", "discovery", "decision"],
    concepts=[
        "how-it-works",
        "why-it-exists",
        "what-changed",
        "problem-solution",
        "gotcha",
        "pattern",
        "trade-off",
    ],
)

RESEARCH_MODE = Mode(
    name="research",
    description="Investigation sessions: sources consulted, findings, and open questions.",
    observation_types=["finding", "source", "hypothesis", "decision", "question"],
    concepts=["evidence", "comparison", "definition", "open-question", "conclusion"],
)

BUILTIN_MODES: Dict[str, Mode] = {mode.name: mode for mode in (CODE_MODE, RESEARCH_MODE)}
DEFAULT_MODE_NAME = CODE_MODE.name


class ModeManager:
    """
    Owns the process-wide active mode.

    Use :meth:`get_instance` for the shared manager; separate instances are
    fine in tests.
    """

    _instance: Optional["ModeManager"] = None

    def __init__(self, active_mode: str = DEFAULT_MODE_NAME):
        self._modes: Dict[str, Mode] = dict(BUILTIN_MODES)
        self._lock = threading.Lock()
        self._active: Mode = self._lookup(active_mode)

    @classmethod
    def get_instance(cls) -> "ModeManager":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        cls._instance = None

    def _lookup(self, name: str) -> Mode:
        try:
            return self._modes[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown mode '{name}'. Available modes: {', '.join(sorted(self._modes))}"
            ) from None

    def register_mode(self, mode: Mode) -> None:
        with self._lock:
            self._modes[mode.name] = mode
        logger.debug(f"Registered mode '{mode.name}'.")

    def available_modes(self) -> List[str]:
        return sorted(self._modes)

    def set_active_mode(self, name: str) -> Mode:
        with self._lock:
            self._active = self._lookup(name)
        logger.info(f"Active mode set to '{name}'.")
        return self._active

    def get_active_mode(self) -> Mode:
        return self._active
