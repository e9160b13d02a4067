from __future__ import annotations

from collections.abc import Mapping

from checkpoint_chat.models import SessionCheckpoint, SessionStatus, TokenUsage
from checkpoint_chat.token_monitor import format_token_usage, progress_segments

_BAR_WIDTH = 20


class CheckpointService:
    def __init__(self, *, line_prefix: str, short_id_len: int = 8, model_limits: Mapping[str, int] | None = None):
        self._line_prefix = line_prefix
        self._short_id_len = short_id_len
        self._model_limits = model_limits

    def short_id(self, value: str) -> str:
        if len(value) <= self._short_id_len:
            return value
        return value[: self._short_id_len]

    def format_checkpoint_list_entry(self, checkpoint: SessionCheckpoint) -> str:
        percent = round(checkpoint.token_usage.percent_used * 100)
        return (
            f"{self._line_prefix}- [{self.short_id(checkpoint.id)}] {checkpoint.task_description} "
            f"(id={checkpoint.id}, status={checkpoint.status}, created={checkpoint.created_at}, "
            f"messages={len(checkpoint.messages)}, context={percent}%)"
        )

    def format_resume_offer_lines(self, checkpoint: SessionCheckpoint) -> list[str]:
        percent = round(checkpoint.token_usage.percent_used * 100)
        lines = [
            f"{self._line_prefix}Found an active checkpoint from a previous session:",
            f"{self._line_prefix}- Task: {checkpoint.task_description}",
        ]
        if checkpoint.current_step:
            lines.append(f"{self._line_prefix}- Current step: {checkpoint.current_step}")
        lines.append(
            f"{self._line_prefix}- Saved: {checkpoint.created_at} | "
            f"{len(checkpoint.messages)} messages | {percent}% context used"
        )
        return lines

    def format_checkpoint_detail_lines(self, checkpoint: SessionCheckpoint) -> list[str]:
        lines = [f"{self._line_prefix}Checkpoint {checkpoint.id} ({checkpoint.status})"]
        lines.append(f"{self._line_prefix}- Session: {checkpoint.session_id}")
        lines.append(f"{self._line_prefix}- Created: {checkpoint.created_at} | Updated: {checkpoint.updated_at or '-'}")
        lines.append(f"{self._line_prefix}- Usage: {format_token_usage(checkpoint.token_usage, limits=self._model_limits)}")
        lines.append(f"{self._line_prefix}Continuation prompt:")
        lines.extend(checkpoint.continuation_prompt.splitlines())
        return lines

    def format_usage_line(self, usage: TokenUsage, status: SessionStatus) -> str:
        segments = progress_segments(usage.percent_used)
        safe = round(segments["safe"] / 100 * _BAR_WIDTH * 0.70)
        warning = round(segments["warning"] / 100 * _BAR_WIDTH * 0.15)
        critical = round(segments["critical"] / 100 * _BAR_WIDTH * 0.15)
        filled = "#" * safe + "!" * warning + "X" * critical
        bar = filled.ljust(_BAR_WIDTH, ".")[:_BAR_WIDTH]
        return (
            f"{self._line_prefix}[{bar}] context {format_token_usage(usage, limits=self._model_limits)} "
            f"- {status}"
        )
