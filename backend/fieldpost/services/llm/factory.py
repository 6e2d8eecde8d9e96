"""LLM provider construction with fallback chain support."""

import logging

from fieldpost.core.config import Settings
from fieldpost.services.llm.base import (
    LLMProvider,
    LLMMessage,
    LLMResponse,
    LLMProviderError,
)
from fieldpost.services.llm.openai_provider import OpenAIProvider
from fieldpost.services.llm.anthropic_provider import AnthropicProvider

logger = logging.getLogger(__name__)


class FallbackLLMProvider(LLMProvider):
    """LLM provider with automatic fallback chain."""

    def __init__(self, providers: list[LLMProvider]):
        """Initialize with a list of providers in priority order."""
        if not providers:
            raise ValueError("At least one provider is required")
        self._providers = providers

    @property
    def name(self) -> str:
        return f"fallback({','.join(p.name for p in self._providers)})"

    @property
    def is_available(self) -> bool:
        return any(p.is_available for p in self._providers)

    async def generate(
        self,
        messages: list[LLMMessage],
        *,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> LLMResponse:
        last_error: Exception | None = None

        for provider in self._providers:
            if not provider.is_available:
                logger.debug("Skipping unavailable provider: %s", provider.name)
                continue

            try:
                # A model name only applies to the provider it was chosen for
                return await provider.generate(
                    messages,
                    model=model if provider is self._providers[0] else None,
                    max_tokens=max_tokens,
                    temperature=temperature,
                )
            except LLMProviderError as e:
                logger.warning("Provider %s failed: %s", provider.name, e)
                last_error = e

        raise LLMProviderError(
            "fallback",
            f"All providers failed. Last error: {last_error}",
            cause=last_error,
        )


def build_llm_provider(settings: Settings) -> LLMProvider:
    """Build the configured provider, falling back to the other one if it is keyed."""
    openai = OpenAIProvider(
        settings.openai_api_key,
        base_url=settings.llm_base_url,
        default_model=settings.llm_model if settings.llm_provider == "openai" else "gpt-4o-mini",
    )
    anthropic = AnthropicProvider(
        settings.anthropic_api_key,
        **({"default_model": settings.llm_model} if settings.llm_provider == "anthropic" else {}),
    )

    ordered: list[LLMProvider] = [openai, anthropic] if settings.llm_provider == "openai" else [anthropic, openai]
    providers = [p for p in ordered if p.is_available] or ordered[:1]

    if len(providers) == 1:
        return providers[0]
    return FallbackLLMProvider(providers)
