from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import Any
from uuid import uuid4

from checkpoint_chat.continuation import ContinuationPromptRenderer
from checkpoint_chat.models import CheckpointStatus, Message, Role, SessionCheckpoint, SessionState, utc_now

DEFAULT_TASK_DESCRIPTION = "Ongoing conversation"
DEFAULT_CURRENT_STEP = "Awaiting continuation"
DEFAULT_NEXT_STEPS = ("Continue from checkpoint",)

_COMPLETED_STEP_SOURCE_COUNT = 3
_COMPLETED_STEP_CHARS = 100


def derive_completed_steps(messages: Sequence[Message]) -> list[str]:
    """Use the openings of the last few assistant replies as completed steps."""
    replies = [m for m in messages if m.role == Role.ASSISTANT and not m.failed and m.content.strip()]
    return [m.content[:_COMPLETED_STEP_CHARS] for m in replies[-_COMPLETED_STEP_SOURCE_COUNT:]]


def build_checkpoint(
    session: SessionState,
    task_description: str,
    completed_steps: Sequence[str],
    current_step: str,
    next_steps: Sequence[str],
    context_variables: Mapping[str, Any] | None = None,
    *,
    renderer: ContinuationPromptRenderer | None = None,
    timestamp: str | None = None,
    checkpoint_id: str | None = None,
) -> SessionCheckpoint:
    """Snapshot ``session`` into a new active checkpoint.

    Messages and context variables are deep-copied so later changes to the
    live session never leak into the snapshot. The continuation prompt is
    rendered once here and stored with the record.
    """
    renderer = renderer or ContinuationPromptRenderer()
    draft = SessionCheckpoint(
        id=checkpoint_id or str(uuid4()),
        session_id=session.session_id,
        timestamp=timestamp or utc_now(),
        task_description=task_description.strip() or DEFAULT_TASK_DESCRIPTION,
        completed_steps=list(completed_steps),
        current_step=current_step,
        next_steps=list(next_steps),
        messages=copy.deepcopy(session.messages),
        token_usage=session.token_usage,
        context_variables=copy.deepcopy(dict(context_variables or {})),
        continuation_prompt="",
        status=CheckpointStatus.ACTIVE,
    )
    return replace(draft, continuation_prompt=renderer.render(draft))
