"""Tests for the LLM provider layer (Ollama over a mock transport)."""

import json

import httpx
import pytest

from shared.llm import LLMUnavailableError, get_llm_provider, set_llm_provider
from shared.llm.ollama import OllamaProvider
from shared.llm.provider import LLMMessage, LLMResponseFormatError, strip_code_fences


def ollama(handler) -> OllamaProvider:
    return OllamaProvider(
        host="http://ollama.test",
        model="llama3.1:8b",
        timeout=5.0,
        transport=httpx.MockTransport(handler),
    )


def chat_reply(content: str) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "model": "llama3.1:8b",
            "message": {"role": "assistant", "content": content},
            "prompt_eval_count": 120,
            "eval_count": 30,
            "done_reason": "stop",
        },
    )


class TestStripCodeFences:
    def test_fenced_json(self) -> None:
        assert strip_code_fences('```json\n{"facts": []}\n```') == '{"facts": []}'

    def test_plain_text_untouched(self) -> None:
        assert strip_code_fences('{"facts": []}') == '{"facts": []}'


class TestOllamaProvider:
    """Tests for OllamaProvider."""

    @pytest.mark.asyncio
    async def test_complete(self) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return chat_reply('{"facts": []}')

        provider = ollama(handler)
        try:
            response = await provider.complete(
                [LLMMessage(role="user", content="Izvuci činjenice")], temperature=0.0, max_tokens=256
            )
        finally:
            await provider.close()

        assert response.content == '{"facts": []}'
        assert response.provider == "ollama"
        assert response.usage.total_tokens == 150
        [payload] = seen
        assert payload["stream"] is False
        assert payload["format"] == "json"
        assert payload["options"] == {"temperature": 0.0, "num_predict": 256}
        assert payload["messages"] == [{"role": "user", "content": "Izvuci činjenice"}]

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self) -> None:
        provider = ollama(lambda request: httpx.Response(503))
        try:
            with pytest.raises(LLMUnavailableError):
                await provider.complete([LLMMessage(role="user", content="x")])
        finally:
            await provider.close()

    @pytest.mark.asyncio
    async def test_generate_json(self) -> None:
        provider = ollama(lambda request: chat_reply('```json\n{"facts": [{"concept": "vat-standard-rate"}]}\n```'))
        try:
            data = await provider.generate_json("Izvuci činjenice")
        finally:
            await provider.close()

        assert data == {"facts": [{"concept": "vat-standard-rate"}]}

    @pytest.mark.asyncio
    async def test_generate_json_rejects_list(self) -> None:
        provider = ollama(lambda request: chat_reply("[1, 2]"))
        try:
            with pytest.raises(LLMResponseFormatError):
                await provider.generate_json("Izvuci činjenice")
        finally:
            await provider.close()

    @pytest.mark.asyncio
    async def test_health_check(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"models": [{"name": "llama3.1:8b"}]})

        provider = ollama(handler)
        try:
            health = await provider.health_check()
        finally:
            await provider.close()

        assert health["status"] == "healthy"
        assert health["model_available"] is True


class TestProviderRegistry:
    """Tests for the process-wide provider accessor."""

    def test_set_provider_overrides_configured_one(self) -> None:
        provider = OllamaProvider(host="http://ollama.test", model="llama3.1:8b")
        try:
            set_llm_provider(provider)
            assert get_llm_provider() is provider
        finally:
            set_llm_provider(None)
