# src/memcore/exceptions.py
"""
Custom exceptions for the memcore library.

This module defines a hierarchy of custom exception classes so that the
orchestration core can tell retryable backend failures apart from fatal
ones. Everything deriving from :class:`BackendError` is absorbed by the
fallback chain; everything else stops the session pass.

Cancellation is not modelled here: it is ``asyncio.CancelledError`` and is
always propagated unchanged.
"""

from typing import Optional


class MemCoreError(Exception):
    """Base class for all memcore specific errors."""
    def __init__(self, message: str = "An unspecified error occurred in memcore."):
        super().__init__(message)


class ConfigurationError(MemCoreError):
    """Raised for errors related to configuration loading or validation."""
    def __init__(self, message: str = "Configuration error."):
        super().__init__(message)


# Short alias used by the config loader
ConfigError = ConfigurationError


class BackendError(MemCoreError):
    """
    Base class for failures of a single extraction backend.

    These are retryable via the fallback chain: another backend may succeed
    with the same conversation history.
    """
    def __init__(self, backend_name: str = "Unknown", message: str = "Backend error."):
        self.backend_name = backend_name
        self.detail = message
        super().__init__(f"Error with backend '{backend_name}': {message}")


class BackendConfigurationError(BackendError, ConfigurationError):
    """
    Raised by a backend whose credentials, endpoint, or model are missing.

    Raised before any network attempt. It is both a configuration error and
    a backend error, so a configured alternate backend is still tried.
    """
    def __init__(self, backend_name: str = "Unknown", message: str = "Backend is not configured."):
        BackendError.__init__(self, backend_name, message)


class TransportError(BackendError):
    """Raised for network failures and timeouts talking to a backend."""
    def __init__(self, backend_name: str = "Unknown", message: str = "Transport error."):
        super().__init__(backend_name, message)


class RemoteError(TransportError):
    """Raised when a backend answers with a non-success HTTP status."""
    def __init__(self, backend_name: str = "Unknown", status: int = 0, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(backend_name, f"HTTP {status} - {body}")


class ProviderError(BackendError):
    """Raised when the backend payload reports an application-level error."""
    def __init__(self, backend_name: str = "Unknown", code: Optional[str] = None, message: str = "Unknown error"):
        self.code = code or "unknown"
        self.message = message
        super().__init__(backend_name, f"{self.code} - {message}")


class ContextLengthError(BackendError):
    """Raised when not even the newest history entry fits the backend's budget."""
    def __init__(self, backend_name: str = "Unknown", limit: int = 0, actual: int = 0):
        self.limit = limit
        self.actual = actual
        super().__init__(backend_name, f"Context length exceeded. Limit: {limit} tokens, Actual: {actual} tokens.")


class PreconditionFailed(MemCoreError):
    """
    Raised when a work item needs state the session does not have yet.

    The usual case is a summary requested before the conversational handle
    (memory session id) was bound by a successful reply.
    """
    def __init__(self, message: str = "Precondition failed.", session_db_id: Optional[int] = None):
        self.session_db_id = session_db_id
        super().__init__(message)


class StorageError(MemCoreError):
    """Base class for errors related to storage operations."""
    def __init__(self, message: str = "Storage error."):
        super().__init__(message)


class QueueError(StorageError):
    """Raised for errors of the pending message queue."""
    def __init__(self, message: str = "Message queue error."):
        super().__init__(message)


class SessionNotFoundError(StorageError):
    """Raised when a session id is not present in the active session table or store."""
    def __init__(self, session_id: object, message: str = "Session not found."):
        self.session_id = session_id
        super().__init__(f"{message} Session ID: '{session_id}'")
