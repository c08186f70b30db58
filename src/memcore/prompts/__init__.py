# src/memcore/prompts/__init__.py
"""
Prompt assembly for the extraction conversation.
"""

from .builder import (
    assemble_prompt,
    build_continuation_prompt,
    build_init_prompt,
    build_observation_prompt,
    build_session_prompt,
    build_summary_prompt,
)

__all__ = [
    "assemble_prompt",
    "build_continuation_prompt",
    "build_init_prompt",
    "build_observation_prompt",
    "build_session_prompt",
    "build_summary_prompt",
]
