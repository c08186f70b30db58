# src/memcore/backends/__init__.py
"""
Extraction backends for memcore.

Each backend sends the session's conversation history to one language model
service. The set of variants is closed and registered in
:data:`memcore.backends.manager.BACKEND_MAP`.
"""

from .anthropic_backend import AnthropicBackend
from .azure_openai import AzureOpenAIBackend
from .base import BaseBackend
from .manager import BACKEND_MAP, BackendManager
from .openai_backend import OpenAIBackend

__all__ = [
    "AnthropicBackend",
    "AzureOpenAIBackend",
    "BACKEND_MAP",
    "BackendManager",
    "BaseBackend",
    "OpenAIBackend",
]
