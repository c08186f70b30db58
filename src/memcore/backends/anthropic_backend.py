# src/memcore/backends/anthropic_backend.py
"""
Anthropic backend using the official ``anthropic`` SDK (messages API).
"""

import logging
from typing import Optional

import anthropic
from anthropic import AsyncAnthropic

from ..config.models import BackendSettings
from ..exceptions import ProviderError, RemoteError, TransportError
from ..models import BackendResponse
from .base import ApiMessages, BaseBackend

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-3-5-haiku-latest"
MAX_ANTHROPIC_CONTEXT_TOKENS = 200000


class AnthropicBackend(BaseBackend):
    """Backend for Anthropic Claude models."""
    DEFAULT_MAX_CONTEXT_TOKENS = MAX_ANTHROPIC_CONTEXT_TOKENS
    HANDLE_PREFIX = "anthropic"

    def __init__(self, settings: BackendSettings, name: Optional[str] = None, log_raw_payloads: bool = False):
        super().__init__(settings, name, log_raw_payloads)
        self.api_key = settings.resolve_api_key()
        self.base_url = settings.endpoint or None
        self.model = settings.model or DEFAULT_MODEL
        self._client: Optional[AsyncAnthropic] = None

    def validate_config(self) -> None:
        self._require(api_key=self.api_key, model=self.model)

    def _get_client(self) -> AsyncAnthropic:
        if self._client is None:
            self._client = AsyncAnthropic(api_key=self.api_key, base_url=self.base_url, timeout=self.settings.timeout)
            logger.debug("AsyncAnthropic client initialized.")
        return self._client

    async def _complete(self, messages: ApiMessages) -> BackendResponse:
        # The messages API requires the conversation to open with a user turn.
        start = 0
        while start < len(messages) and messages[start]["role"] != "user":
            start += 1
        if start:
            logger.debug(f"Dropping {start} leading assistant message(s) for Anthropic request.")
        messages = messages[start:]
        if not messages:
            raise ProviderError(self.get_name(), "invalid_request", "No user message left to send.")

        request = {
            "model": self.model,
            "messages": messages,
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_tokens,
        }
        self._log_payload("request", request)
        try:
            response = await self._get_client().messages.create(**request)
        except anthropic.APIStatusError as e:
            logger.error(f"Anthropic API error (status {e.status_code}): {e.message}")
            raise RemoteError(self.get_name(), status=e.status_code, body=e.message) from e
        except anthropic.APIConnectionError as e:
            raise TransportError(self.get_name(), f"Connection failed: {e}") from e
        except anthropic.AnthropicError as e:
            raise ProviderError(self.get_name(), None, str(e)) from e
        self._log_payload("response", response.model_dump())

        content = "".join(
            block.text for block in (response.content or []) if getattr(block, "type", None) == "text"
        )
        if not content:
            logger.error("Empty response from Anthropic messages API.")
            return BackendResponse(content="", backend=self.get_name())

        usage = response.usage
        if usage is None:
            return BackendResponse(content=content, backend=self.get_name())
        input_tokens = usage.input_tokens or 0
        output_tokens = usage.output_tokens or 0
        return BackendResponse(
            content=content,
            tokens_used=input_tokens + output_tokens,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            backend=self.get_name(),
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            logger.debug("AnthropicBackend client closed.")
        self._client = None
