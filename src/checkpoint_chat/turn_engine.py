from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from loguru import logger

from checkpoint_chat.provider import LLMProvider, StreamError, TextDelta, UsageDelta, UsageStart


@dataclass(frozen=True)
class TurnOutcome:
    text: str
    input_tokens: int | None = None
    output_tokens: int | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def usage_known(self) -> bool:
        return self.output_tokens is not None


class TurnEngine:
    """Consumes one provider stream into a TurnOutcome."""

    def __init__(
        self,
        *,
        provider: LLMProvider,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str,
    ) -> None:
        self._provider = provider
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._system_prompt = system_prompt

    @property
    def model(self) -> str:
        return self._model

    async def run(
        self,
        messages: list[dict],
        *,
        on_text_delta: Callable[[str], None] | None = None,
    ) -> TurnOutcome:
        parts: list[str] = []
        input_tokens: int | None = None
        output_tokens: int | None = None

        try:
            async for event in self._provider.stream_reply(
                self._model,
                self._max_tokens,
                self._temperature,
                self._system_prompt,
                messages,
            ):
                if isinstance(event, TextDelta):
                    parts.append(event.text)
                    if on_text_delta is not None:
                        on_text_delta(event.text)
                elif isinstance(event, UsageStart):
                    input_tokens = event.input_tokens
                elif isinstance(event, UsageDelta):
                    output_tokens = event.output_tokens
                elif isinstance(event, StreamError):
                    logger.warning(f"Stream ended with error after {len(parts)} delta(s): {event.message}")
                    return TurnOutcome(text="".join(parts), input_tokens=input_tokens, error=event.message)
        except Exception as ex:
            logger.error(f"Stream failed after {len(parts)} delta(s): {type(ex).__name__}: {ex}")
            return TurnOutcome(
                text="".join(parts),
                input_tokens=input_tokens,
                error=str(ex) or type(ex).__name__,
            )

        if output_tokens is None:
            logger.debug("Stream closed without a usage report; falling back to estimation")
        return TurnOutcome(
            text="".join(parts),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
