# src/memcore/sessions/__init__.py
"""
Active session table for memcore.
"""

from .manager import SessionManager, project_name_from_cwd

__all__ = ["SessionManager", "project_name_from_cwd"]
