"""
LLM Provider Base
=================

Abstract base class and common models for LLM providers.

Version: 0.1.0
"""

import json
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from shared.config import settings, LLMProvider as LLMProviderEnum
from shared.logging import get_logger

logger = get_logger(__name__)


class LLMError(Exception):
    """Base class for provider failures."""


class LLMUnavailableError(LLMError):
    """Provider could not be reached or kept rate limiting after retries."""


class LLMResponseFormatError(LLMError):
    """Provider answered, but not with the structure that was asked for."""


class MessageRole(str, Enum):
    """Message role in conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class LLMMessage(BaseModel):
    """A message in the conversation."""

    role: MessageRole | Literal["system", "user", "assistant"]
    content: str

    def to_dict(self) -> dict[str, str]:
        """Convert to dict for API calls."""
        role_str = self.role.value if isinstance(self.role, MessageRole) else self.role
        return {"role": role_str, "content": self.content}


class LLMUsage(BaseModel):
    """Token usage information."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class LLMResponse(BaseModel):
    """Response from LLM provider."""

    content: str = Field(..., description="Generated text content")
    model: str = Field(..., description="Model used for generation")
    provider: str = Field(..., description="Provider name")
    usage: LLMUsage = Field(default_factory=LLMUsage)
    finish_reason: str | None = None
    latency_ms: float = 0.0


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences models like to wrap JSON in."""
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    The Extractor only depends on this interface, so any backend (or a
    scripted provider in tests) can be injected.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name."""
        ...

    @property
    @abstractmethod
    def model(self) -> str:
        """Model identifier."""
        ...

    @abstractmethod
    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion for the given messages.

        Args:
            messages: Conversation messages
            temperature: Sampling temperature (0.0-1.0)
            max_tokens: Maximum tokens to generate

        Returns:
            LLMResponse with generated content

        Raises:
            LLMUnavailableError: transport failure after provider retries
        """
        ...

    async def health_check(self) -> dict[str, Any]:
        """Report provider identity; concrete providers may probe the API."""
        return {"status": "healthy", "provider": self.name, "model": self.model}

    async def generate_json(
        self,
        prompt: str,
        system_prompt: str | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """
        Generate a JSON object.

        Args:
            prompt: User prompt requesting JSON
            system_prompt: Optional system prompt
            **kwargs: Additional arguments for complete()

        Returns:
            Parsed JSON dict

        Raises:
            LLMResponseFormatError: response is not a JSON object
        """
        json_system = (system_prompt or "") + (
            "\n\nRespond ONLY with valid JSON. No markdown, no explanation."
        )
        messages = [
            LLMMessage(role="system", content=json_system.strip()),
            LLMMessage(role="user", content=prompt),
        ]
        response = await self.complete(messages, **kwargs)

        try:
            parsed = json.loads(strip_code_fences(response.content))
        except json.JSONDecodeError as e:
            raise LLMResponseFormatError(f"invalid JSON from {self.name}: {e}") from e

        if not isinstance(parsed, dict):
            raise LLMResponseFormatError(
                f"expected a JSON object from {self.name}, got {type(parsed).__name__}"
            )
        return parsed


# Global provider instance
_provider: LLMProvider | None = None


def get_llm_provider() -> LLMProvider:
    """
    Get the configured LLM provider instance.

    Uses the provider specified in settings.llm.provider.
    Creates and caches the instance on first call.
    """
    global _provider

    if _provider is None:
        provider_type = settings.llm.provider

        if provider_type == LLMProviderEnum.CLAUDE:
            from shared.llm.claude import ClaudeProvider

            _provider = ClaudeProvider()
        elif provider_type == LLMProviderEnum.OLLAMA:
            from shared.llm.ollama import OllamaProvider

            _provider = OllamaProvider()
        else:
            raise ValueError(f"Unsupported LLM provider: {provider_type}")

        logger.info(
            "llm_provider_initialized",
            provider=_provider.name,
            model=_provider.model,
        )

    return _provider


def set_llm_provider(provider: LLMProvider | None) -> None:
    """
    Set a custom LLM provider (None resets to lazy initialization).

    Useful for testing or custom implementations.
    """
    global _provider
    _provider = provider
    if provider is not None:
        logger.info(
            "llm_provider_set",
            provider=provider.name,
            model=provider.model,
        )
