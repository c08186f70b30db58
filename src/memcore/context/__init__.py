# src/memcore/context/__init__.py
"""
Conversation state helpers: token estimation and history truncation.
"""

from .history import (
    CHARS_PER_TOKEN_ESTIMATE,
    TruncationResult,
    estimate_history_tokens,
    estimate_tokens,
    to_api_messages,
    truncate_history,
)

__all__ = [
    "CHARS_PER_TOKEN_ESTIMATE",
    "TruncationResult",
    "estimate_history_tokens",
    "estimate_tokens",
    "to_api_messages",
    "truncate_history",
]
