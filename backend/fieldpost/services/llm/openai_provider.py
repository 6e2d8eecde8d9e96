"""OpenAI LLM provider implementation."""

from openai import AsyncOpenAI, APIError, AuthenticationError, RateLimitError

from fieldpost.services.llm.base import (
    LLMProvider,
    LLMMessage,
    LLMResponse,
    LLMProviderError,
    LLMAuthenticationError,
    LLMRateLimitError,
    TokenUsage,
)


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions provider (also serves OpenAI-compatible endpoints)."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str | None = None,
        default_model: str = "gpt-4o-mini",
    ):
        self._api_key = api_key
        self._default_model = default_model

        self._client: AsyncOpenAI | None = None
        if self._api_key:
            self._client = AsyncOpenAI(api_key=self._api_key, base_url=base_url)

    @property
    def name(self) -> str:
        return "openai"

    @property
    def is_available(self) -> bool:
        return self._client is not None

    async def generate(
        self,
        messages: list[LLMMessage],
        *,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> LLMResponse:
        if not self._client:
            raise LLMProviderError(self.name, "OpenAI client not configured")

        model = model or self._default_model
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=[{"role": m.role, "content": m.content} for m in messages],
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except AuthenticationError as e:
            raise LLMAuthenticationError(self.name, "Invalid API key") from e
        except RateLimitError as e:
            retry_after = None
            if getattr(e, "response", None) is not None:
                retry_after = float(e.response.headers.get("retry-after", 0))
            raise LLMRateLimitError(self.name, retry_after) from e
        except APIError as e:
            raise LLMProviderError(self.name, str(e), cause=e) from e

        choice = response.choices[0]
        usage = TokenUsage()
        if response.usage:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )
        return LLMResponse(
            content=choice.message.content or "",
            model=response.model,
            provider=self.name,
            usage=usage,
            finish_reason=choice.finish_reason,
        )
