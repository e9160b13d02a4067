from __future__ import annotations

import json
from dataclasses import dataclass

from checkpoint_chat.models import Message, SessionCheckpoint

_ELLIPSIS = "..."


@dataclass(frozen=True)
class ContinuationPromptRenderer:
    """Renders the brief replayed as the first turn of a resumed session.

    ``tail_messages`` bounds how much history is quoted and ``truncate_chars``
    bounds each quoted message.
    """

    tail_messages: int = 5
    truncate_chars: int = 200

    @classmethod
    def compact(cls) -> ContinuationPromptRenderer:
        return cls(tail_messages=6, truncate_chars=150)

    def render(self, checkpoint: SessionCheckpoint) -> str:
        completed = "\n".join(f"- ✅ {step}" for step in checkpoint.completed_steps) or "- (none)"
        upcoming = "\n".join(f"- ⏳ {step}" for step in checkpoint.next_steps) or "- (none)"
        variables = json.dumps(checkpoint.context_variables, indent=2, sort_keys=True, default=str)

        return (
            f"## SESSION RESUME - {checkpoint.id}\n"
            "\n"
            f"**Task:** {checkpoint.task_description}\n"
            "\n"
            "### Progress\n"
            "**Completed:**\n"
            f"{completed}\n"
            "\n"
            f"**Current:** {checkpoint.current_step}\n"
            "\n"
            "**Next Steps:**\n"
            f"{upcoming}\n"
            "\n"
            "### Recent Context\n"
            f"{self.render_recent_context(checkpoint.messages)}\n"
            "\n"
            "### Variables\n"
            f"{variables}\n"
            "\n"
            f'**INSTRUCTION:** Continue from "{checkpoint.current_step}" immediately. No confirmation needed.'
        )

    def render_recent_context(self, messages: list[Message]) -> str:
        if self.tail_messages <= 0 or not messages:
            return "(no messages)"
        tail = messages[-self.tail_messages :]
        return "\n".join(f"{str(m.role).upper()}: {self._truncate(m.content)}" for m in tail)

    def _truncate(self, text: str) -> str:
        if len(text) <= self.truncate_chars:
            return text
        return text[: self.truncate_chars] + _ELLIPSIS
