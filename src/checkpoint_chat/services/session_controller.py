from __future__ import annotations

import copy
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from loguru import logger

from checkpoint_chat.checkpoint_builder import (
    DEFAULT_CURRENT_STEP,
    DEFAULT_NEXT_STEPS,
    DEFAULT_TASK_DESCRIPTION,
    build_checkpoint,
    derive_completed_steps,
)
from checkpoint_chat.continuation import ContinuationPromptRenderer
from checkpoint_chat.memory.activity import ActivityLog
from checkpoint_chat.memory.checkpoints import CheckpointStore
from checkpoint_chat.models import (
    CheckpointStatus,
    Message,
    Role,
    SessionCheckpoint,
    SessionState,
    SessionStatus,
    TokenUsage,
)
from checkpoint_chat.token_monitor import accumulate_usage, estimate_tokens, get_session_status
from checkpoint_chat.turn_engine import TurnEngine


class SendInProgressError(RuntimeError):
    """A reply is still streaming; only one exchange may be in flight."""


class CheckpointPrompt(StrEnum):
    NONE = "none"
    SUGGESTED = "suggested"
    REQUIRED = "required"


@dataclass(frozen=True)
class ExchangeResult:
    user_message: Message
    assistant_message: Message
    token_usage: TokenUsage
    status: SessionStatus
    checkpoint_prompt: CheckpointPrompt
    reported_input_tokens: int | None = None

    @property
    def failed(self) -> bool:
        return self.assistant_message.failed


class SessionController:
    """Owns the live SessionState and drives sends, checkpoint saves and resumes."""

    def __init__(
        self,
        *,
        turn_engine: TurnEngine,
        checkpoint_store: CheckpointStore,
        activity_log: ActivityLog | None = None,
        renderer: ContinuationPromptRenderer | None = None,
        model_limits: Mapping[str, int] | None = None,
    ) -> None:
        self._turn_engine = turn_engine
        self._store = checkpoint_store
        self._activity_log = activity_log
        self._renderer = renderer or ContinuationPromptRenderer()
        self._model_limits = model_limits
        self._state = SessionState.fresh(turn_engine.model)
        self._in_flight = False
        self._suggestion_dismissed = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def model_limits(self) -> Mapping[str, int] | None:
        return self._model_limits

    @property
    def status(self) -> SessionStatus:
        return get_session_status(self._state.token_usage)

    @property
    def is_streaming(self) -> bool:
        return self._in_flight

    @property
    def checkpoint_prompt(self) -> CheckpointPrompt:
        status = self.status
        if status == SessionStatus.CRITICAL:
            return CheckpointPrompt.REQUIRED
        if status == SessionStatus.WARNING and not self._suggestion_dismissed:
            return CheckpointPrompt.SUGGESTED
        return CheckpointPrompt.NONE

    def dismiss_checkpoint_suggestion(self) -> bool:
        """Hide the warning-zone nudge. Has no effect outside the warning zone."""
        if self.status != SessionStatus.WARNING:
            return False
        self._suggestion_dismissed = True
        return True

    def start_new_session(self) -> SessionState:
        self._ensure_idle()
        self._state = SessionState.fresh(self._turn_engine.model)
        self._suggestion_dismissed = False
        logger.info(f"Started session {self._state.session_id}")
        return self._state

    async def send(self, text: str, *, on_text_delta: Callable[[str], None] | None = None) -> ExchangeResult:
        if not text.strip():
            raise ValueError("Cannot send an empty message")
        self._ensure_idle()

        state = self._state
        request = self._provider_messages() + [{"role": str(Role.USER), "content": text}]
        user_message = Message(role=Role.USER, content=text, tokens=estimate_tokens(text))
        assistant_message = Message(role=Role.ASSISTANT, content="")
        state.messages.append(user_message)
        state.messages.append(assistant_message)

        def append_delta(delta: str) -> None:
            assistant_message.content += delta
            if on_text_delta is not None:
                on_text_delta(delta)

        self._in_flight = True
        try:
            outcome = await self._turn_engine.run(request, on_text_delta=append_delta)
        except Exception as ex:
            self._mark_failed(user_message, assistant_message, str(ex) or type(ex).__name__)
            raise
        finally:
            self._in_flight = False

        if outcome.failed:
            self._mark_failed(user_message, assistant_message, outcome.error or "unknown error")
        else:
            assistant_message.content = outcome.text
            if outcome.usage_known:
                assistant_message.tokens = outcome.output_tokens
            else:
                assistant_message.tokens = estimate_tokens(outcome.text)
            state.token_usage = accumulate_usage(
                state.token_usage,
                user_message.tokens or 0,
                assistant_message.tokens,
                limits=self._model_limits,
            )
            logger.debug(
                f"Session {state.session_id}: +{user_message.tokens} in, +{assistant_message.tokens} out, "
                f"{state.token_usage.percent_used:.1%} used ({self.status})"
            )

        return ExchangeResult(
            user_message=user_message,
            assistant_message=assistant_message,
            token_usage=state.token_usage,
            status=self.status,
            checkpoint_prompt=self.checkpoint_prompt,
            reported_input_tokens=outcome.input_tokens,
        )

    async def retry_last(self, *, on_text_delta: Callable[[str], None] | None = None) -> ExchangeResult:
        last_user = next((m for m in reversed(self._state.messages) if m.role == Role.USER), None)
        if last_user is None or not last_user.failed:
            raise ValueError("The last message did not fail; nothing to retry")
        return await self.send(last_user.content, on_text_delta=on_text_delta)

    def save_checkpoint(
        self,
        task_description: str | None = None,
        completed_steps: Sequence[str] | None = None,
        current_step: str | None = None,
        next_steps: Sequence[str] | None = None,
        context_variables: Mapping[str, Any] | None = None,
    ) -> SessionCheckpoint:
        """Persist a checkpoint of the live session, then start a fresh one.

        If the store rejects the write the live session is left untouched so
        the save can be retried.
        """
        self._ensure_idle()
        messages = self._state.messages
        checkpoint = build_checkpoint(
            self._state,
            task_description or DEFAULT_TASK_DESCRIPTION,
            derive_completed_steps(messages) if completed_steps is None else completed_steps,
            current_step or DEFAULT_CURRENT_STEP,
            list(DEFAULT_NEXT_STEPS) if next_steps is None else next_steps,
            context_variables,
            renderer=self._renderer,
        )
        saved = self._store.insert(checkpoint)
        self._record_activity(saved)
        self.start_new_session()
        return saved

    def find_resumable(self) -> SessionCheckpoint | None:
        return self._store.get_active()

    def list_checkpoints(self, limit: int = 20) -> list[SessionCheckpoint]:
        return self._store.list(limit)

    def get_checkpoint(self, checkpoint_id: str) -> SessionCheckpoint:
        return self._store.get(checkpoint_id)

    async def resume(
        self,
        checkpoint: SessionCheckpoint,
        *,
        submit: bool = True,
        on_text_delta: Callable[[str], None] | None = None,
    ) -> ExchangeResult | None:
        """Mark ``checkpoint`` resumed, rehydrate from it and replay its continuation prompt."""
        self._ensure_idle()
        resumed = self._store.update_status(checkpoint.id, CheckpointStatus.RESUMED)
        self._state = SessionState(
            session_id=resumed.session_id,
            messages=copy.deepcopy(resumed.messages),
            token_usage=resumed.token_usage,
        )
        self._suggestion_dismissed = False
        logger.info(
            f"Resumed checkpoint {resumed.id} into session {resumed.session_id} "
            f"({len(resumed.messages)} messages)"
        )
        if not submit:
            return None
        return await self.send(resumed.continuation_prompt, on_text_delta=on_text_delta)

    def abandon(self, checkpoint: SessionCheckpoint) -> SessionCheckpoint:
        self._ensure_idle()
        return self._store.update_status(checkpoint.id, CheckpointStatus.ABANDONED)

    def _provider_messages(self) -> list[dict]:
        return [{"role": str(m.role), "content": m.content} for m in self._state.messages if not m.failed]

    def _mark_failed(self, user_message: Message, assistant_message: Message, error: str) -> None:
        marker = f"[Error: {error}]"
        partial = assistant_message.content
        assistant_message.content = f"{partial}\n\n{marker}" if partial else marker
        assistant_message.tokens = None
        user_message.failed = True
        assistant_message.failed = True
        logger.warning(f"Turn failed in session {self._state.session_id}: {error}")

    def _record_activity(self, checkpoint: SessionCheckpoint) -> None:
        if self._activity_log is None:
            return
        try:
            self._activity_log.record_checkpoint(checkpoint)
        except Exception as ex:
            logger.warning(f"Activity logging failed for checkpoint {checkpoint.id}: {ex}")

    def _ensure_idle(self) -> None:
        if self._in_flight:
            raise SendInProgressError("A reply is still streaming; wait for it to finish")
