# src/memcore/context/history.py
"""
Token estimation and history truncation for backend requests.

The session's conversation history grows without bound; each backend only sees
the newest suffix that fits its context ceiling. Truncation never touches the
session's own list.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from ..models import ConversationMessage, Role

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN_ESTIMATE = 4


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN_ESTIMATE)


def estimate_history_tokens(history: Sequence[ConversationMessage]) -> int:
    return sum(estimate_tokens(message.content) for message in history)


@dataclass
class TruncationResult:
    """
    Outcome of :func:`truncate_history`.

    ``messages`` is always a suffix of the input sequence.
    """
    messages: List[ConversationMessage] = field(default_factory=list)
    original_count: int = 0
    kept_count: int = 0
    dropped_count: int = 0
    estimated_tokens: int = 0

    @property
    def truncated(self) -> bool:
        return self.dropped_count > 0


def truncate_history(history: Sequence[ConversationMessage], max_tokens: int) -> TruncationResult:
    """
    Keeps the newest entries whose estimated total stays within ``max_tokens``.

    Walks from newest to oldest and stops at the first entry that would push
    the total over the ceiling, so older entries are never kept once a newer
    one has been dropped. If the newest entry alone is too large the result is
    empty; callers decide how to report that.

    Args:
        history: The conversation history. Not modified.
        max_tokens: Estimated token ceiling.

    Returns:
        A :class:`TruncationResult` with the kept suffix and counts.
    """
    kept: List[ConversationMessage] = []
    total = 0
    for message in reversed(history):
        message_tokens = estimate_tokens(message.content)
        if total + message_tokens > max_tokens:
            break
        kept.append(message)
        total += message_tokens
    kept.reverse()

    result = TruncationResult(
        messages=kept,
        original_count=len(history),
        kept_count=len(kept),
        dropped_count=len(history) - len(kept),
        estimated_tokens=total,
    )
    if result.truncated:
        logger.warning(
            f"Conversation history truncated to fit context window: "
            f"original_messages={result.original_count}, kept_messages={result.kept_count}, "
            f"dropped_messages={result.dropped_count}, estimated_tokens={result.estimated_tokens}, "
            f"token_limit={max_tokens}"
        )
    return result


def to_api_messages(history: Sequence[ConversationMessage]) -> List[Dict[str, str]]:
    """Converts history entries to the ``{"role", "content"}`` dicts chat APIs expect."""
    return [{"role": Role(message.role).value, "content": message.content} for message in history]
