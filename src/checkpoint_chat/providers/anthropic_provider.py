from collections.abc import AsyncIterator

import anthropic
from loguru import logger
from tenacity import retry

from checkpoint_chat.provider import StreamError, StreamEvent, TextDelta, UsageDelta, UsageStart
from checkpoint_chat.providers.common import default_retry_kwargs


class AnthropicProvider:
    def __init__(self, api_key: str):
        self._client = anthropic.AsyncAnthropic(api_key=api_key)

    @retry(**default_retry_kwargs((
        anthropic.RateLimitError,
        anthropic.APIConnectionError,
        anthropic.APITimeoutError,
    )))
    async def _open_stream(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str,
        messages: list[dict],
    ):
        logger.debug(f"API request: model={model}, max_tokens={max_tokens}, messages={len(messages)}")
        return await self._client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=messages,
            stream=True,
        )

    async def stream_reply(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str,
        messages: list[dict],
    ) -> AsyncIterator[StreamEvent]:
        """Relay Anthropic raw stream events as provider stream events.

        ``message_start`` carries the prompt token count and ``message_delta``
        the final output count.
        """
        try:
            stream = await self._open_stream(model, max_tokens, temperature, system_prompt, messages)
            async for event in stream:
                if event.type == "message_start":
                    usage = getattr(event.message, "usage", None)
                    yield UsageStart(input_tokens=int(getattr(usage, "input_tokens", 0) or 0))
                elif event.type == "content_block_delta":
                    if event.delta.type == "text_delta":
                        yield TextDelta(event.delta.text)
                elif event.type == "message_delta":
                    usage = getattr(event, "usage", None)
                    output_tokens = getattr(usage, "output_tokens", None)
                    if output_tokens is not None:
                        logger.debug(f"API response: output_tokens={output_tokens}")
                        yield UsageDelta(output_tokens=int(output_tokens))
        except anthropic.APIError as ex:
            logger.error(f"Anthropic API error: {ex}")
            yield StreamError(message=str(ex))
