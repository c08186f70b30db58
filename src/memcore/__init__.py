# src/memcore/__init__.py
"""
memcore - Persistent memory capture for coding assistant sessions.

Tool invocations reported by a host assistant are queued per session and
replayed to an extraction language model, which condenses them into typed
observations and session summaries stored in SQLite. Backends are tried in
a configurable fallback order and every reply is persisted before its queue
messages are acknowledged.
"""

from importlib.metadata import PackageNotFoundError, version

from .api import MemCore
from .agent import SessionAgent, TokenSplit
from .backends import (
    AnthropicBackend,
    AzureOpenAIBackend,
    BackendManager,
    BaseBackend,
    OpenAIBackend,
)
from .bridge import WorkerBridge
from .config import MemCoreConfig, load_config
from .exceptions import (
    BackendConfigurationError,
    BackendError,
    ConfigError,
    ConfigurationError,
    ContextLengthError,
    MemCoreError,
    PreconditionFailed,
    ProviderError,
    QueueError,
    RemoteError,
    SessionNotFoundError,
    StorageError,
    TransportError,
)
from .fallback import FallbackController
from .models import (
    ActiveSession,
    BackendResponse,
    ConversationMessage,
    ObservationMessage,
    ObservationRecord,
    ProcessingResult,
    Role,
    SessionState,
    SummarizeMessage,
    SummaryRecord,
)
from .modes import Mode, ModeManager
from .sessions import SessionManager

try:
    __version__ = version("memcore")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"


__all__ = [
    # Facade
    "MemCore",
    "WorkerBridge",
    "SessionManager",
    "SessionAgent",
    "TokenSplit",
    "FallbackController",
    "Mode",
    "ModeManager",

    # Backends
    "AnthropicBackend",
    "AzureOpenAIBackend",
    "BackendManager",
    "BaseBackend",
    "OpenAIBackend",

    # Configuration
    "MemCoreConfig",
    "load_config",

    # Models
    "ActiveSession",
    "BackendResponse",
    "ConversationMessage",
    "ObservationMessage",
    "ObservationRecord",
    "ProcessingResult",
    "Role",
    "SessionState",
    "SummarizeMessage",
    "SummaryRecord",

    # Exceptions
    "BackendConfigurationError",
    "BackendError",
    "ConfigError",
    "ConfigurationError",
    "ContextLengthError",
    "MemCoreError",
    "PreconditionFailed",
    "ProviderError",
    "QueueError",
    "RemoteError",
    "SessionNotFoundError",
    "StorageError",
    "TransportError",

    "__version__",
]
