"""Anthropic LLM provider implementation."""

from anthropic import AsyncAnthropic, APIError, AuthenticationError, RateLimitError

from fieldpost.services.llm.base import (
    LLMProvider,
    LLMMessage,
    LLMResponse,
    LLMProviderError,
    LLMAuthenticationError,
    LLMRateLimitError,
    TokenUsage,
)


class AnthropicProvider(LLMProvider):
    """Anthropic Messages API provider."""

    def __init__(self, api_key: str | None, default_model: str = "claude-3-5-haiku-latest"):
        self._api_key = api_key
        self._default_model = default_model

        self._client: AsyncAnthropic | None = None
        if self._api_key:
            self._client = AsyncAnthropic(api_key=self._api_key)

    @property
    def name(self) -> str:
        return "anthropic"

    @property
    def is_available(self) -> bool:
        return self._client is not None

    @staticmethod
    def _prepare_messages(messages: list[LLMMessage]) -> tuple[str | None, list[dict]]:
        """Anthropic takes the system prompt separately from the conversation."""
        system_message = None
        conversation = []
        for msg in messages:
            if msg.role == "system":
                system_message = msg.content
            else:
                conversation.append({"role": msg.role, "content": msg.content})
        return system_message, conversation

    async def generate(
        self,
        messages: list[LLMMessage],
        *,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> LLMResponse:
        if not self._client:
            raise LLMProviderError(self.name, "Anthropic client not configured")

        system_message, conversation = self._prepare_messages(messages)
        kwargs = {
            "model": model or self._default_model,
            "messages": conversation,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if system_message:
            kwargs["system"] = system_message

        try:
            response = await self._client.messages.create(**kwargs)
        except AuthenticationError as e:
            raise LLMAuthenticationError(self.name, "Invalid API key") from e
        except RateLimitError as e:
            raise LLMRateLimitError(self.name) from e
        except APIError as e:
            raise LLMProviderError(self.name, str(e), cause=e) from e

        content = "".join(block.text for block in response.content if block.type == "text")
        return LLMResponse(
            content=content,
            model=response.model,
            provider=self.name,
            usage=TokenUsage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
                total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            ),
            finish_reason=response.stop_reason,
        )
