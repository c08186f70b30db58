# src/memcore/queue/__init__.py
"""
Durable message queue feeding the session orchestrator.
"""

from .iterator import MessageQueue
from .store import (
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSED,
    STATUS_PROCESSING,
    PendingMessageStore,
)

__all__ = [
    "MessageQueue",
    "PendingMessageStore",
    "STATUS_FAILED",
    "STATUS_PENDING",
    "STATUS_PROCESSED",
    "STATUS_PROCESSING",
]
