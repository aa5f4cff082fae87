from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

from turnloop.types import Message, ModelFragment, ToolDescriptor


@runtime_checkable
class ModelStreamSource(Protocol):
    def stream(
        self,
        messages: list[Message],
        tools: list[ToolDescriptor],
        *,
        system_prompt: str = "",
    ) -> AsyncIterator[ModelFragment]:
        """Stream one model response for the given history as ``ModelFragment``s.

        Implementations are async generators; errors raised while iterating end
        the generation.
        """
        ...


def create_stream_source(
    provider_name: str,
    api_key: str,
    model: str,
    *,
    max_tokens: int = 4096,
    temperature: float = 1.0,
) -> ModelStreamSource:
    """Factory: create a ModelStreamSource by provider name."""
    name = provider_name.strip().lower()
    if name == "anthropic":
        from turnloop.providers.anthropic_provider import AnthropicStreamSource
        return AnthropicStreamSource(api_key, model, max_tokens=max_tokens, temperature=temperature)
    if name == "openai":
        from turnloop.providers.openai_provider import OpenAIStreamSource
        return OpenAIStreamSource(api_key, model, max_tokens=max_tokens, temperature=temperature)
    raise ValueError(f"Unknown provider: {provider_name!r}. Supported: 'anthropic', 'openai'")
