# tests/backends/test_sdk_backends.py
"""
Tests for the SDK-based backends (OpenAI and Anthropic).

The SDK clients are replaced by patching ``_get_client``; SDK exceptions are
built with real ``httpx`` objects so the error mapping sees what the SDKs
would raise.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import openai
import pytest

from memcore.backends.anthropic_backend import AnthropicBackend
from memcore.backends.openai_backend import OpenAIBackend
from memcore.config.models import BackendSettings
from memcore.exceptions import BackendConfigurationError, ProviderError, RemoteError, TransportError
from memcore.models import ConversationMessage, Role

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_REQUEST = httpx.Request("POST", "https://api.example.com/v1/chat")


def _status_response(status: int) -> httpx.Response:
    return httpx.Response(status, request=_REQUEST)


def _history(*contents: str):
    roles = [Role.USER, Role.ASSISTANT]
    return [ConversationMessage(role=roles[i % 2], content=c) for i, c in enumerate(contents)]


def _openai_client(create: AsyncMock) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = create
    return client


def _openai_completion(content: str, total_tokens=42, prompt_tokens=30, completion_tokens=12) -> MagicMock:
    completion = MagicMock()
    choice = MagicMock()
    choice.message.content = content
    completion.choices = [choice]
    completion.usage.total_tokens = total_tokens
    completion.usage.prompt_tokens = prompt_tokens
    completion.usage.completion_tokens = completion_tokens
    completion.model_dump.return_value = {}
    return completion


def _anthropic_client(create: AsyncMock) -> MagicMock:
    client = MagicMock()
    client.messages.create = create
    return client


def _anthropic_message(*texts: str, input_tokens=10, output_tokens=5) -> MagicMock:
    message = MagicMock()
    message.content = [MagicMock(type="text", text=t) for t in texts]
    message.usage.input_tokens = input_tokens
    message.usage.output_tokens = output_tokens
    message.model_dump.return_value = {}
    return message


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------


class TestOpenAIBackend:

    def _backend(self, **overrides) -> OpenAIBackend:
        values = {"type": "openai", "api_key": "sk-test", "model": "gpt-4o-mini"}
        values.update(overrides)
        return OpenAIBackend(BackendSettings(**values), name="openai")

    async def test_success(self):
        backend = self._backend()
        create = AsyncMock(return_value=_openai_completion("reply", 42))
        with patch.object(backend, "_get_client", return_value=_openai_client(create)):
            response = await backend.send(_history("hello"))
        assert response.content == "reply"
        assert response.tokens_used == 42
        assert (response.input_tokens, response.output_tokens) == (30, 12)
        assert response.backend == "openai"
        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"] == [{"role": "user", "content": "hello"}]
        assert kwargs["temperature"] == 0.3

    async def test_empty_reply(self):
        backend = self._backend()
        create = AsyncMock(return_value=_openai_completion(None))
        with patch.object(backend, "_get_client", return_value=_openai_client(create)):
            response = await backend.send(_history("hello"))
        assert response.content == ""
        assert response.tokens_used is None

    async def test_status_error(self):
        backend = self._backend()
        error = openai.APIStatusError("server exploded", response=_status_response(500), body=None)
        with patch.object(backend, "_get_client", return_value=_openai_client(AsyncMock(side_effect=error))):
            with pytest.raises(RemoteError) as exc_info:
                await backend.send(_history("hello"))
        assert exc_info.value.status == 500

    async def test_connection_error(self):
        backend = self._backend()
        error = openai.APIConnectionError(request=_REQUEST)
        with patch.object(backend, "_get_client", return_value=_openai_client(AsyncMock(side_effect=error))):
            with pytest.raises(TransportError):
                await backend.send(_history("hello"))

    async def test_other_sdk_error(self):
        backend = self._backend()
        error = openai.OpenAIError("bad state")
        with patch.object(backend, "_get_client", return_value=_openai_client(AsyncMock(side_effect=error))):
            with pytest.raises(ProviderError):
                await backend.send(_history("hello"))

    async def test_missing_key(self):
        backend = self._backend(api_key=None)
        with patch.object(backend, "_get_client") as get_client:
            with pytest.raises(BackendConfigurationError):
                await backend.send(_history("hello"))
        get_client.assert_not_called()


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class TestAnthropicBackend:

    def _backend(self, **overrides) -> AnthropicBackend:
        values = {"type": "anthropic", "api_key": "sk-ant-test"}
        values.update(overrides)
        return AnthropicBackend(BackendSettings(**values), name="anthropic")

    def test_defaults(self):
        backend = self._backend()
        assert backend.model == "claude-3-5-haiku-latest"
        assert backend.max_context_tokens == 200000

    async def test_success(self):
        backend = self._backend()
        create = AsyncMock(return_value=_anthropic_message("part one ", "part two"))
        with patch.object(backend, "_get_client", return_value=_anthropic_client(create)):
            response = await backend.send(_history("hello"))
        assert response.content == "part one part two"
        assert response.tokens_used == 15
        assert (response.input_tokens, response.output_tokens) == (10, 5)
        assert create.call_args.kwargs["max_tokens"] == 4096

    async def test_usage_split_kept(self):
        backend = self._backend()
        create = AsyncMock(return_value=_anthropic_message("hi", input_tokens=90, output_tokens=10))
        with patch.object(backend, "_get_client", return_value=_anthropic_client(create)):
            response = await backend.send(_history("hello"))
        assert response.tokens_used == 100
        assert response.input_tokens == 90
        assert response.output_tokens == 10

    async def test_leading_assistant_messages_dropped(self):
        backend = self._backend()
        create = AsyncMock(return_value=_anthropic_message("ok"))
        messages = [
            {"role": "assistant", "content": "old reply"},
            {"role": "user", "content": "new prompt"},
        ]
        with patch.object(backend, "_get_client", return_value=_anthropic_client(create)):
            await backend._complete(messages)
        assert create.call_args.kwargs["messages"] == [{"role": "user", "content": "new prompt"}]

    async def test_only_assistant_messages(self):
        backend = self._backend()
        with patch.object(backend, "_get_client") as get_client:
            with pytest.raises(ProviderError) as exc_info:
                await backend._complete([{"role": "assistant", "content": "x"}])
        get_client.assert_not_called()
        assert exc_info.value.code == "invalid_request"

    async def test_status_error(self):
        backend = self._backend()
        error = anthropic.APIStatusError("overloaded", response=_status_response(529), body=None)
        with patch.object(backend, "_get_client", return_value=_anthropic_client(AsyncMock(side_effect=error))):
            with pytest.raises(RemoteError) as exc_info:
                await backend.send(_history("hello"))
        assert exc_info.value.status == 529

    async def test_connection_error(self):
        backend = self._backend()
        error = anthropic.APIConnectionError(request=_REQUEST)
        with patch.object(backend, "_get_client", return_value=_anthropic_client(AsyncMock(side_effect=error))):
            with pytest.raises(TransportError):
                await backend.send(_history("hello"))

    async def test_non_text_blocks_ignored(self):
        backend = self._backend()
        message = _anthropic_message("visible")
        message.content.append(MagicMock(type="tool_use", text="hidden"))
        with patch.object(backend, "_get_client", return_value=_anthropic_client(AsyncMock(return_value=message))):
            response = await backend.send(_history("hello"))
        assert response.content == "visible"
