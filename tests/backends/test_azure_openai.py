# tests/backends/test_azure_openai.py
"""
Tests for the Azure OpenAI backend.

The HTTP layer is replaced by patching ``_post_json``, so these tests cover
request construction and response/error mapping without a network.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from memcore.backends.azure_openai import AzureOpenAIBackend
from memcore.config.models import BackendSettings
from memcore.exceptions import (
    BackendConfigurationError,
    ContextLengthError,
    ProviderError,
    RemoteError,
    TransportError,
)
from memcore.fallback import FallbackController
from memcore.models import ConversationMessage, Role

from conftest import FakeBackend


def _backend(**overrides) -> AzureOpenAIBackend:
    values = {
        "type": "azure_openai",
        "api_key": "secret",
        "endpoint": "https://example.openai.azure.com/",
        "model": "gpt-4o",
        "api_version": "2024-10-21",
    }
    values.update(overrides)
    return AzureOpenAIBackend(BackendSettings(**values), name="azure_openai")


def _history(*contents: str):
    roles = [Role.USER, Role.ASSISTANT]
    return [ConversationMessage(role=roles[i % 2], content=c) for i, c in enumerate(contents)]


def _ok(content: str = "<observation><title>t</title></observation>", total_tokens=100) -> str:
    return json.dumps({
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 70, "completion_tokens": 30, "total_tokens": total_tokens},
    })


class TestAzureRequest:

    def test_url_is_quoted(self):
        backend = _backend(model="my deployment", api_version="2024-10-21 preview")
        assert backend.url == (
            "https://example.openai.azure.com/openai/deployments/my%20deployment"
            "/chat/completions?api-version=2024-10-21%20preview"
        )

    async def test_request_body_and_headers(self):
        backend = _backend()
        with patch.object(backend, "_post_json", new=AsyncMock(return_value=(200, _ok()))) as post:
            await backend.send(_history("hello"))
        url, headers, body = post.call_args.args
        assert url == backend.url
        assert headers["api-key"] == "secret"
        assert body == {
            "messages": [{"role": "user", "content": "hello"}],
            "temperature": 0.3,
            "max_completion_tokens": 4096,
        }

    async def test_history_truncated_to_ceiling(self):
        backend = _backend(max_context_tokens=20)
        history = _history("a" * 400, "b" * 40, "c" * 40)
        with patch.object(backend, "_post_json", new=AsyncMock(return_value=(200, _ok()))) as post:
            await backend.send(history)
        sent = post.call_args.args[2]["messages"]
        assert [m["content"] for m in sent] == ["b" * 40, "c" * 40]

    async def test_newest_entry_too_large(self):
        backend = _backend(max_context_tokens=5)
        with patch.object(backend, "_post_json", new=AsyncMock()) as post:
            with pytest.raises(ContextLengthError) as exc_info:
                await backend.send(_history("x" * 100))
        post.assert_not_called()
        assert exc_info.value.limit == 5
        assert exc_info.value.actual == 25

    @pytest.mark.parametrize("missing", ["api_key", "endpoint", "model"])
    async def test_missing_setting_fails_before_network(self, missing, monkeypatch):
        monkeypatch.delenv("AZURE_OPENAI_API_KEY", raising=False)
        backend = _backend(**{missing: None})
        with patch.object(backend, "_post_json", new=AsyncMock()) as post:
            with pytest.raises(BackendConfigurationError) as exc_info:
                await backend.send(_history("hello"))
        post.assert_not_called()
        assert missing in exc_info.value.detail

    def test_api_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("AZURE_OPENAI_API_KEY", "from-env")
        backend = _backend(api_key=None, api_key_env="AZURE_OPENAI_API_KEY")
        assert backend.api_key == "from-env"


class TestAzureResponse:

    async def test_success(self):
        backend = _backend()
        with patch.object(backend, "_post_json", new=AsyncMock(return_value=(200, _ok("reply", 100)))):
            response = await backend.send(_history("hello"))
        assert response.content == "reply"
        assert response.tokens_used == 100
        assert response.backend == "azure_openai"

    async def test_http_error(self):
        backend = _backend()
        with patch.object(backend, "_post_json", new=AsyncMock(return_value=(500, "Internal Server Error"))):
            with pytest.raises(RemoteError) as exc_info:
                await backend.send(_history("hello"))
        assert exc_info.value.status == 500
        assert exc_info.value.body == "Internal Server Error"

    async def test_error_payload(self):
        backend = _backend()
        payload = json.dumps({"error": {"code": "content_filter", "message": "Filtered"}})
        with patch.object(backend, "_post_json", new=AsyncMock(return_value=(200, payload))):
            with pytest.raises(ProviderError) as exc_info:
                await backend.send(_history("hello"))
        assert exc_info.value.code == "content_filter"
        assert exc_info.value.message == "Filtered"

    async def test_error_payload_without_code(self):
        backend = _backend()
        payload = json.dumps({"error": {"message": "Something"}})
        with patch.object(backend, "_post_json", new=AsyncMock(return_value=(200, payload))):
            with pytest.raises(ProviderError) as exc_info:
                await backend.send(_history("hello"))
        assert exc_info.value.code == "unknown"

    async def test_error_payload_as_string(self):
        backend = _backend()
        payload = json.dumps({"error": "quota exceeded"})
        with patch.object(backend, "_post_json", new=AsyncMock(return_value=(200, payload))):
            with pytest.raises(ProviderError) as exc_info:
                await backend.send(_history("hello"))
        assert exc_info.value.code == "unknown"
        assert exc_info.value.message == "quota exceeded"

    async def test_string_error_falls_back(self):
        backend = _backend()
        secondary = FakeBackend("secondary", ["from secondary"])
        payload = json.dumps({"error": "quota exceeded"})
        with patch.object(backend, "_post_json", new=AsyncMock(return_value=(200, payload))):
            response, answered_by = await FallbackController([backend, secondary]).send(_history("hello"))
        assert response.content == "from secondary"
        assert answered_by is secondary

    @pytest.mark.parametrize(
        "payload",
        [
            {"choices": ["not a choice"]},
            {"choices": [{"message": "not a message"}]},
            {"choices": "nope"},
            {"choices": [{"message": {"content": "reply"}}], "usage": "n/a"},
        ],
    )
    async def test_malformed_choices(self, payload):
        backend = _backend()
        with patch.object(backend, "_post_json", new=AsyncMock(return_value=(200, json.dumps(payload)))):
            response = await backend.send(_history("hello"))
        assert response.tokens_used is None

    async def test_invalid_json(self):
        backend = _backend()
        with patch.object(backend, "_post_json", new=AsyncMock(return_value=(200, "<html>"))):
            with pytest.raises(ProviderError) as exc_info:
                await backend.send(_history("hello"))
        assert exc_info.value.code == "invalid_response"

    async def test_empty_content_is_not_an_error(self):
        backend = _backend()
        payload = json.dumps({"choices": [{"message": {"content": ""}}], "usage": {"total_tokens": 12}})
        with patch.object(backend, "_post_json", new=AsyncMock(return_value=(200, payload))):
            response = await backend.send(_history("hello"))
        assert response.content == ""
        assert response.tokens_used is None

    async def test_no_choices(self):
        backend = _backend()
        with patch.object(backend, "_post_json", new=AsyncMock(return_value=(200, json.dumps({"choices": []})))):
            response = await backend.send(_history("hello"))
        assert response.is_empty


class TestAzureTransport:

    @pytest.mark.parametrize(
        "failure", [aiohttp.ClientConnectionError("refused"), asyncio.TimeoutError()]
    )
    async def test_transport_failures(self, failure):
        backend = _backend()
        client_session = MagicMock()
        client_session.post = MagicMock(side_effect=failure)
        with patch.object(backend, "_get_session", new=AsyncMock(return_value=client_session)):
            with pytest.raises(TransportError):
                await backend.send(_history("hello"))

    async def test_close_without_session(self):
        backend = _backend()
        await backend.close()
        await backend.close()

    def test_synthesized_handle(self):
        handle = _backend().synthesize_handle("conv-1")
        assert handle.startswith("azure-openai-conv-1-")
        assert handle.rsplit("-", 1)[1].isdigit()
