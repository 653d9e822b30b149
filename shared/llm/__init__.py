"""
LLM Provider Module
===================

Abstraction layer for the model that reads regulatory text.

Supported providers:
- Anthropic Claude (primary)
- Ollama (local)

Usage:
    from shared.llm import get_llm_provider

    provider = get_llm_provider()
    data = await provider.generate_json(prompt, system_prompt=SYSTEM)
"""

from shared.llm.provider import (
    LLMError,
    LLMMessage,
    LLMProvider,
    LLMResponse,
    LLMResponseFormatError,
    LLMUnavailableError,
    LLMUsage,
    get_llm_provider,
    set_llm_provider,
    strip_code_fences,
)

__all__ = [
    "LLMError",
    "LLMMessage",
    "LLMProvider",
    "LLMResponse",
    "LLMResponseFormatError",
    "LLMUnavailableError",
    "LLMUsage",
    "get_llm_provider",
    "set_llm_provider",
    "strip_code_fences",
]
