from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class UsageStart:
    input_tokens: int


@dataclass(frozen=True)
class UsageDelta:
    output_tokens: int


@dataclass(frozen=True)
class StreamError:
    message: str


StreamEvent = TextDelta | UsageStart | UsageDelta | StreamError


@runtime_checkable
class LLMProvider(Protocol):
    def stream_reply(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str,
        messages: list[dict],
    ) -> AsyncIterator[StreamEvent]:
        """Stream one assistant reply for ``messages`` ({role, content} dicts).

        Yields text deltas and usage reports. Provider failures are yielded as
        a final StreamError rather than raised.
        """
        ...


def create_provider(provider_name: str, api_key: str) -> LLMProvider:
    """Factory: create an LLMProvider by name."""
    name = provider_name.strip().lower()
    if name == "anthropic":
        from checkpoint_chat.providers.anthropic_provider import AnthropicProvider
        return AnthropicProvider(api_key)
    if name == "openai":
        from checkpoint_chat.providers.openai_provider import OpenAIProvider
        return OpenAIProvider(api_key)
    raise ValueError(f"Unknown provider: {provider_name!r}. Supported: 'anthropic', 'openai'")
