"""LLM integration services."""

from fieldpost.services.llm.base import (
    LLMProvider,
    LLMResponse,
    LLMMessage,
    TokenUsage,
    LLMProviderError,
    LLMRateLimitError,
    LLMAuthenticationError,
)
from fieldpost.services.llm.factory import build_llm_provider, FallbackLLMProvider
from fieldpost.services.llm.openai_provider import OpenAIProvider
from fieldpost.services.llm.anthropic_provider import AnthropicProvider

__all__ = [
    # Base types
    "LLMProvider",
    "LLMResponse",
    "LLMMessage",
    "TokenUsage",
    # Errors
    "LLMProviderError",
    "LLMRateLimitError",
    "LLMAuthenticationError",
    # Factory
    "build_llm_provider",
    "FallbackLLMProvider",
    # Providers
    "OpenAIProvider",
    "AnthropicProvider",
]
