from collections.abc import AsyncIterator

import openai
from loguru import logger
from tenacity import retry

from checkpoint_chat.provider import StreamError, StreamEvent, TextDelta, UsageDelta, UsageStart
from checkpoint_chat.providers.common import default_retry_kwargs


def _to_openai_messages(system_prompt: str, messages: list[dict]) -> list[dict]:
    out: list[dict] = []
    if system_prompt:
        out.append({"role": "system", "content": system_prompt})
    for msg in messages:
        out.append({"role": msg["role"], "content": str(msg.get("content", ""))})
    return out


class OpenAIProvider:
    def __init__(self, api_key: str):
        self._client = openai.AsyncOpenAI(api_key=api_key)

    @retry(**default_retry_kwargs((
        openai.RateLimitError,
        openai.APIConnectionError,
        openai.APITimeoutError,
    )))
    async def _open_stream(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str,
        messages: list[dict],
    ):
        oai_messages = _to_openai_messages(system_prompt, messages)
        logger.debug(f"API request: model={model}, max_tokens={max_tokens}, messages={len(oai_messages)}")
        return await self._client.chat.completions.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=oai_messages,
            stream=True,
            stream_options={"include_usage": True},
        )

    async def stream_reply(
        self,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str,
        messages: list[dict],
    ) -> AsyncIterator[StreamEvent]:
        """Relay OpenAI chat chunks as provider stream events.

        With ``include_usage`` the usage block arrives on a final chunk that
        has no choices, so both usage events are emitted at the end.
        """
        try:
            stream = await self._open_stream(model, max_tokens, temperature, system_prompt, messages)
            async for chunk in stream:
                choice = chunk.choices[0] if chunk.choices else None
                if choice is not None and choice.delta is not None and choice.delta.content:
                    yield TextDelta(choice.delta.content)

                usage = getattr(chunk, "usage", None)
                if usage is not None:
                    logger.debug(
                        f"API response: prompt_tokens={usage.prompt_tokens}, "
                        f"completion_tokens={usage.completion_tokens}"
                    )
                    yield UsageStart(input_tokens=int(usage.prompt_tokens or 0))
                    yield UsageDelta(output_tokens=int(usage.completion_tokens or 0))
        except openai.APIError as ex:
            logger.error(f"OpenAI API error: {ex}")
            yield StreamError(message=str(ex))
