# src/memcore/storage/__init__.py
"""
Persistence for sessions and extracted memory records.
"""

from .sqlite_memory import SqliteMemoryStore

__all__ = ["SqliteMemoryStore"]
