# src/memcore/backends/azure_openai.py
"""
Azure OpenAI backend.

Talks to the Azure OpenAI chat completions REST endpoint directly with
aiohttp, so HTTP status errors and error payloads can be told apart.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

import aiohttp

from ..config.models import BackendSettings
from ..exceptions import ProviderError, RemoteError, TransportError
from ..models import BackendResponse
from .base import ApiMessages, BaseBackend

logger = logging.getLogger(__name__)

DEFAULT_AZURE_API_VERSION = "2024-10-21"
MAX_AZURE_CONTEXT_TOKENS = 128000


class AzureOpenAIBackend(BaseBackend):
    """
    Backend for an Azure OpenAI deployment.

    Settings used: ``endpoint`` (resource URL), ``model`` (deployment name),
    ``api_key`` / ``api_key_env``, ``api_version``, ``temperature``,
    ``max_tokens`` and ``timeout``.
    """
    DEFAULT_MAX_CONTEXT_TOKENS = MAX_AZURE_CONTEXT_TOKENS
    HANDLE_PREFIX = "azure-openai"

    def __init__(self, settings: BackendSettings, name: Optional[str] = None, log_raw_payloads: bool = False):
        super().__init__(settings, name, log_raw_payloads)
        self.api_key = settings.resolve_api_key()
        self.endpoint = (settings.endpoint or "").rstrip("/")
        self.model = settings.model or ""
        self.api_version = settings.api_version or DEFAULT_AZURE_API_VERSION
        self._session: Optional[aiohttp.ClientSession] = None

    def validate_config(self) -> None:
        self._require(api_key=self.api_key, endpoint=self.endpoint, model=self.model)

    @property
    def url(self) -> str:
        return (
            f"{self.endpoint}/openai/deployments/{quote(self.model, safe='')}"
            f"/chat/completions?api-version={quote(self.api_version, safe='')}"
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.settings.timeout))
            logger.debug("Created new aiohttp.ClientSession for AzureOpenAIBackend.")
        return self._session

    async def _post_json(self, url: str, headers: Dict[str, str], body: Dict[str, Any]) -> Tuple[int, str]:
        """POSTs ``body`` and returns the status code and raw response text."""
        session = await self._get_session()
        try:
            async with session.post(url, json=body, headers=headers) as response:
                return response.status, await response.text()
        except asyncio.TimeoutError as e:
            raise TransportError(self.get_name(), f"Request timed out after {self.settings.timeout}s.") from e
        except aiohttp.ClientError as e:
            raise TransportError(self.get_name(), f"Request failed: {e}") from e

    async def _complete(self, messages: ApiMessages) -> BackendResponse:
        body = {
            "messages": messages,
            "temperature": self.settings.temperature,
            "max_completion_tokens": self.settings.max_tokens,
        }
        headers = {"Content-Type": "application/json", "api-key": self.api_key or ""}
        self._log_payload("request", body)

        status, text = await self._post_json(self.url, headers, body)
        if not 200 <= status < 300:
            logger.error(f"Azure OpenAI request failed with HTTP {status}.")
            raise RemoteError(self.get_name(), status=status, body=text)

        try:
            data = json.loads(text) if text else {}
        except json.JSONDecodeError as e:
            raise ProviderError(self.get_name(), "invalid_response", f"Response is not valid JSON: {e}") from e
        self._log_payload("response", data)

        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict):
            raise ProviderError(self.get_name(), error.get("code"), error.get("message") or "Unknown error")
        if error:
            raise ProviderError(self.get_name(), None, str(error))

        content = _first_choice_content(data)
        if not content:
            logger.error("Empty response from Azure OpenAI chat completions.")
            return BackendResponse(content="", tokens_used=None, backend=self.get_name())

        usage = data.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        return BackendResponse(content=content, tokens_used=usage.get("total_tokens"), backend=self.get_name())

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
            logger.debug("AzureOpenAIBackend aiohttp session closed.")
        self._session = None


def _first_choice_content(data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    return content if isinstance(content, str) else ""
