# src/memcore/backends/base.py
"""
Abstract Base Class for extraction backends.

A backend takes the session's full conversation history, trims it to its own
context ceiling, and returns the model's reply as a
:class:`~memcore.models.BackendResponse`. Every failure it reports is a
:class:`~memcore.exceptions.BackendError` so the fallback chain can move on
to the next backend.
"""

import abc
import json
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from ..config.models import BackendSettings
from ..context.history import estimate_tokens, to_api_messages, truncate_history
from ..exceptions import BackendConfigurationError, ContextLengthError
from ..models import BackendResponse, ConversationMessage

logger = logging.getLogger(__name__)

ApiMessages = List[Dict[str, str]]


class BaseBackend(abc.ABC):
    """
    Base class for extraction backend integrations.

    Subclasses implement :meth:`validate_config` and :meth:`_complete`;
    :meth:`send` takes care of validation order, truncation and logging.
    """
    DEFAULT_MAX_CONTEXT_TOKENS: int = 128000
    # Prefix of synthesized conversational handles.
    HANDLE_PREFIX: str = "backend"
    # Stateless backends keep no server-side conversation; the handle is synthesized locally.
    is_stateless: bool = True

    def __init__(self, settings: BackendSettings, name: Optional[str] = None, log_raw_payloads: bool = False):
        """
        Args:
            settings: The backend's ``[backends.<name>]`` section.
            name: Section name; defaults to the backend type.
            log_raw_payloads: Log request and response bodies at DEBUG level.
        """
        self.settings = settings
        self._name = name or settings.type
        self.log_raw_payloads_enabled = log_raw_payloads

    def get_name(self) -> str:
        """Returns the name this backend is configured under (e.g. ``"azure_openai"``)."""
        return self._name

    @property
    def max_context_tokens(self) -> int:
        return self.settings.max_context_tokens or self.DEFAULT_MAX_CONTEXT_TOKENS

    def synthesize_handle(self, content_session_id: str) -> str:
        """Builds a conversational handle for a stateless backend."""
        return f"{self.HANDLE_PREFIX}-{content_session_id}-{int(time.time() * 1000)}"

    @abc.abstractmethod
    def validate_config(self) -> None:
        """
        Checks credentials, endpoint and model without touching the network.

        Raises:
            BackendConfigurationError: If a required setting is missing.
        """
        pass

    @abc.abstractmethod
    async def _complete(self, messages: ApiMessages) -> BackendResponse:
        """Performs the actual call with already truncated, role-converted messages."""
        pass

    def _require(self, **values: Any) -> None:
        missing = [key for key, value in values.items() if not value]
        if missing:
            raise BackendConfigurationError(
                self.get_name(), f"Missing required setting(s): {', '.join(missing)}."
            )

    def _log_payload(self, label: str, payload: Any) -> None:
        if self.log_raw_payloads_enabled and logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"RAW {self.get_name()} {label}: {json.dumps(payload, default=str)[:4000]}")

    async def send(self, history: Sequence[ConversationMessage]) -> BackendResponse:
        """
        Sends the newest history suffix that fits :attr:`max_context_tokens`.

        Args:
            history: The session's full conversation history. Not modified.

        Raises:
            BackendConfigurationError: Before any network attempt, if misconfigured.
            ContextLengthError: If not even the newest entry fits.
            TransportError, RemoteError, ProviderError: From the call itself.
        """
        self.validate_config()
        result = truncate_history(history, self.max_context_tokens)
        if not result.messages:
            newest = estimate_tokens(history[-1].content) if history else 0
            raise ContextLengthError(self.get_name(), limit=self.max_context_tokens, actual=newest)

        logger.debug(
            f"Sending {result.kept_count} message(s) (~{result.estimated_tokens} tokens) to backend '{self.get_name()}'."
        )
        response = await self._complete(to_api_messages(result.messages))
        if not response.backend:
            response.backend = self.get_name()
        return response

    async def close(self) -> None:
        """Releases network resources. Safe to call more than once."""
        pass
