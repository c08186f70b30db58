# src/memcore/backends/openai_backend.py
"""
OpenAI backend using the official ``openai`` SDK (chat completions).
"""

import logging
from typing import Optional

import openai
from openai import AsyncOpenAI

from ..config.models import BackendSettings
from ..exceptions import ProviderError, RemoteError, TransportError
from ..models import BackendResponse
from .base import ApiMessages, BaseBackend

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"


class OpenAIBackend(BaseBackend):
    """
    Backend for the OpenAI API or any OpenAI-compatible server (``endpoint`` is the base URL).
    """
    HANDLE_PREFIX = "openai"

    def __init__(self, settings: BackendSettings, name: Optional[str] = None, log_raw_payloads: bool = False):
        super().__init__(settings, name, log_raw_payloads)
        self.api_key = settings.resolve_api_key()
        self.base_url = settings.endpoint or None
        self.model = settings.model or DEFAULT_MODEL
        self._client: Optional[AsyncOpenAI] = None

    def validate_config(self) -> None:
        self._require(api_key=self.api_key, model=self.model)

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.settings.timeout)
            logger.debug("AsyncOpenAI client initialized.")
        return self._client

    async def _complete(self, messages: ApiMessages) -> BackendResponse:
        request = {
            "model": self.model,
            "messages": messages,
            "temperature": self.settings.temperature,
            "max_completion_tokens": self.settings.max_tokens,
        }
        self._log_payload("request", request)
        try:
            completion = await self._get_client().chat.completions.create(**request)
        except openai.APIStatusError as e:
            logger.error(f"OpenAI API error (status {e.status_code}): {e.message}")
            raise RemoteError(self.get_name(), status=e.status_code, body=e.message) from e
        except openai.APIConnectionError as e:
            raise TransportError(self.get_name(), f"Connection failed: {e}") from e
        except openai.OpenAIError as e:
            raise ProviderError(self.get_name(), None, str(e)) from e
        self._log_payload("response", completion.model_dump())

        content = ""
        if completion.choices:
            content = completion.choices[0].message.content or ""
        if not content:
            logger.error("Empty response from OpenAI chat completions.")
            return BackendResponse(content="", backend=self.get_name())

        usage = completion.usage
        if usage is None:
            return BackendResponse(content=content, backend=self.get_name())
        return BackendResponse(
            content=content,
            tokens_used=usage.total_tokens,
            input_tokens=usage.prompt_tokens,
            output_tokens=usage.completion_tokens,
            backend=self.get_name(),
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            logger.debug("OpenAIBackend client closed.")
        self._client = None
