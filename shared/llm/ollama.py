"""
Ollama Provider
===============

Local LLM provider for self-hosted extraction runs.

Version: 0.1.0
"""

import time
from typing import Any

import httpx
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared.config import settings
from shared.llm.provider import (
    LLMMessage,
    LLMProvider,
    LLMResponse,
    LLMUnavailableError,
    LLMUsage,
)
from shared.logging import get_logger


logger = get_logger(__name__)

TRANSIENT_ERRORS = (httpx.ConnectError, httpx.TimeoutException)


class OllamaProvider(LLMProvider):
    """Ollama local LLM provider (chat API, non-streaming)."""

    def __init__(
        self,
        host: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._host = host or settings.llm.ollama.host
        self._model = model or settings.llm.ollama.model
        self._timeout = timeout or settings.llm.timeout_seconds

        self._client = httpx.AsyncClient(
            base_url=self._host,
            timeout=httpx.Timeout(self._timeout),
            transport=transport,
        )

        logger.debug(
            "ollama_provider_initialized",
            host=self._host,
            model=self._model,
        )

    @property
    def name(self) -> str:
        return "ollama"

    @property
    def model(self) -> str:
        return self._model

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(settings.llm.max_retries),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        before_sleep=lambda retry_state: logger.warning(
            "ollama_retry",
            attempt=retry_state.attempt_number,
        ),
    )
    async def _chat(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._client.post("/api/chat", json=payload)
        response.raise_for_status()
        return response.json()

    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion using Ollama.

        Args:
            messages: Conversation messages
            temperature: Sampling temperature
            max_tokens: Max tokens (num_predict in Ollama)

        Returns:
            LLMResponse with generated content
        """
        start_time = time.perf_counter()

        options: dict[str, Any] = {
            "temperature": temperature if temperature is not None else settings.llm.temperature,
        }
        if max_tokens is not None:
            options["num_predict"] = max_tokens

        payload = {
            "model": self._model,
            "messages": [msg.to_dict() for msg in messages],
            "stream": False,
            "format": "json",
            "options": options,
        }

        try:
            data = await self._chat(payload)
        except TRANSIENT_ERRORS as e:
            logger.error("ollama_unavailable", error=str(e), error_type=type(e).__name__)
            raise LLMUnavailableError(str(e)) from e
        except RetryError as e:
            raise LLMUnavailableError(str(e)) from e
        except httpx.HTTPStatusError as e:
            logger.error(
                "ollama_http_error",
                status_code=e.response.status_code,
                error=str(e),
            )
            if e.response.status_code >= 500:
                raise LLMUnavailableError(str(e)) from e
            raise

        latency_ms = (time.perf_counter() - start_time) * 1000
        prompt_tokens = data.get("prompt_eval_count", 0)
        completion_tokens = data.get("eval_count", 0)

        logger.debug(
            "ollama_completion",
            model=self._model,
            tokens=prompt_tokens + completion_tokens,
            latency_ms=round(latency_ms, 2),
        )

        return LLMResponse(
            content=data.get("message", {}).get("content", ""),
            model=data.get("model", self._model),
            provider=self.name,
            usage=LLMUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            finish_reason=data.get("done_reason"),
            latency_ms=latency_ms,
        )

    async def health_check(self) -> dict[str, Any]:
        """
        Check Ollama server health and model availability.

        Returns:
            dict with status and available models
        """
        try:
            start = time.perf_counter()
            response = await self._client.get("/api/tags")
            response.raise_for_status()
            latency_ms = (time.perf_counter() - start) * 1000

            models = [m["name"] for m in response.json().get("models", [])]
            model_available = any(self._model in m for m in models)

            return {
                "status": "healthy" if model_available else "degraded",
                "provider": self.name,
                "model": self._model,
                "model_available": model_available,
                "latency_ms": round(latency_ms, 2),
            }
        except httpx.HTTPError as e:
            logger.warning("ollama_health_check_failed", error=str(e))
            return {
                "status": "unhealthy",
                "provider": self.name,
                "model": self._model,
                "error": str(e),
            }

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
