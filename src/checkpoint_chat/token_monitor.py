"""Token estimation, usage accounting and context-threshold evaluation.

All functions here are pure. Counts are approximate by design: user turns are
estimated from character length, assistant turns use the provider's reported
output count when one arrives.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from checkpoint_chat.models import Message, Role, SessionStatus, TokenUsage

DEFAULT_LIMIT_KEY = "default"

# Conservative context limits, leaving headroom below the real window.
MODEL_LIMITS: dict[str, int] = {
    "claude-sonnet-4-20250514": 180_000,
    "claude-opus-4-5-20251101": 180_000,
    "claude-3-5-sonnet-20241022": 180_000,
    DEFAULT_LIMIT_KEY: 150_000,
}

CHECKPOINT_THRESHOLD = 0.70
WARNING_THRESHOLD = 0.85

_CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """ceil(len(text) / 4); zero for empty text."""
    return -(-len(text) // _CHARS_PER_TOKEN)


def resolve_model_limit(model: str, limits: Mapping[str, int] | None = None) -> int:
    table = MODEL_LIMITS if limits is None else limits
    limit = table.get(model)
    if limit is None:
        limit = table.get(DEFAULT_LIMIT_KEY, MODEL_LIMITS[DEFAULT_LIMIT_KEY])
    return limit


def merge_model_limits(overrides: Mapping[str, int] | None) -> dict[str, int]:
    merged = dict(MODEL_LIMITS)
    for model, limit in (overrides or {}).items():
        value = int(limit)
        if value <= 0:
            raise ValueError(f"Model limit must be positive: {model}={limit}")
        merged[str(model)] = value
    return merged


def _usage(input_tokens: int, output_tokens: int, model: str, limits: Mapping[str, int] | None) -> TokenUsage:
    total = input_tokens + output_tokens
    return TokenUsage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=total,
        percent_used=total / resolve_model_limit(model, limits),
        model=model,
    )


def accumulate_usage(
    usage: TokenUsage,
    input_delta: int,
    output_delta: int,
    *,
    limits: Mapping[str, int] | None = None,
) -> TokenUsage:
    """Add one exchange's counts to ``usage``.

    Deltas must be >= 0; a negative delta raises ValueError instead of being
    clamped.
    """
    if input_delta < 0 or output_delta < 0:
        raise ValueError(f"Token deltas must be non-negative: input={input_delta}, output={output_delta}")
    return _usage(usage.input_tokens + input_delta, usage.output_tokens + output_delta, usage.model, limits)


def message_tokens(message: Message) -> int:
    if message.tokens is not None:
        return message.tokens
    return estimate_tokens(message.content)


def calculate_token_usage(
    messages: Iterable[Message],
    model: str,
    *,
    limits: Mapping[str, int] | None = None,
) -> TokenUsage:
    """Recompute usage from a full message list.

    Messages flagged ``failed`` never reached the model and are skipped, which
    keeps this in step with turn-by-turn accumulation.
    """
    input_tokens = 0
    output_tokens = 0
    for message in messages:
        if message.failed:
            continue
        tokens = message_tokens(message)
        if message.role == Role.USER:
            input_tokens += tokens
        else:
            output_tokens += tokens
    return _usage(input_tokens, output_tokens, model, limits)


def needs_checkpoint(usage: TokenUsage) -> bool:
    return usage.percent_used >= CHECKPOINT_THRESHOLD


def is_critical(usage: TokenUsage) -> bool:
    return usage.percent_used >= WARNING_THRESHOLD


def get_session_status(usage: TokenUsage) -> SessionStatus:
    if is_critical(usage):
        return SessionStatus.CRITICAL
    if needs_checkpoint(usage):
        return SessionStatus.WARNING
    return SessionStatus.ACTIVE


def format_token_usage(usage: TokenUsage, *, limits: Mapping[str, int] | None = None) -> str:
    limit = resolve_model_limit(usage.model, limits)
    percent = round(usage.percent_used * 100)
    return f"{usage.total_tokens:,} / {limit:,} ({percent}%)"


def progress_segments(percent_used: float) -> dict[str, float]:
    """Fill level (0-100) of the safe, warning and critical bands of a usage bar."""
    safe = min(percent_used, CHECKPOINT_THRESHOLD) / CHECKPOINT_THRESHOLD * 100
    warning = 0.0
    if percent_used > CHECKPOINT_THRESHOLD:
        warning = min((percent_used - CHECKPOINT_THRESHOLD) / (WARNING_THRESHOLD - CHECKPOINT_THRESHOLD), 1) * 100
    critical = 0.0
    if percent_used > WARNING_THRESHOLD:
        critical = min((percent_used - WARNING_THRESHOLD) / (1 - WARNING_THRESHOLD), 1) * 100
    return {"safe": safe, "warning": warning, "critical": critical}
