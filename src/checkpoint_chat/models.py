from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


class CheckpointStatus(StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    RESUMED = "resumed"
    SUPERSEDED = "superseded"


class SessionStatus(StrEnum):
    ACTIVE = "active"
    WARNING = "warning"
    CRITICAL = "critical"


# Only an active checkpoint may move. COMPLETED is reserved for callers that
# track task completion; the terminal client never sets it.
ALLOWED_TRANSITIONS: dict[CheckpointStatus, frozenset[CheckpointStatus]] = {
    CheckpointStatus.ACTIVE: frozenset(
        {
            CheckpointStatus.SUPERSEDED,
            CheckpointStatus.RESUMED,
            CheckpointStatus.ABANDONED,
            CheckpointStatus.COMPLETED,
        }
    ),
    CheckpointStatus.COMPLETED: frozenset(),
    CheckpointStatus.ABANDONED: frozenset(),
    CheckpointStatus.RESUMED: frozenset(),
    CheckpointStatus.SUPERSEDED: frozenset(),
}


def can_transition(current: CheckpointStatus, target: CheckpointStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass
class Message:
    role: Role
    content: str
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: str = field(default_factory=utc_now)
    tokens: int | None = None
    failed: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "role": str(self.role),
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.tokens is not None:
            data["tokens"] = self.tokens
        if self.failed:
            data["failed"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        tokens = data.get("tokens")
        return cls(
            id=str(data["id"]),
            role=Role(data["role"]),
            content=str(data.get("content", "")),
            timestamp=str(data.get("timestamp", "")),
            tokens=int(tokens) if tokens is not None else None,
            failed=bool(data.get("failed", False)),
        )


@dataclass(frozen=True)
class TokenUsage:
    """Running token counters for one session.

    ``percent_used`` is a fraction of the model limit and is not capped, so it
    can exceed 1.0 once the context is overrun.
    """

    input_tokens: int
    output_tokens: int
    total_tokens: int
    percent_used: float
    model: str

    def __post_init__(self) -> None:
        if self.input_tokens < 0 or self.output_tokens < 0:
            raise ValueError(
                f"Token counters must be non-negative: input={self.input_tokens}, output={self.output_tokens}"
            )
        if self.total_tokens != self.input_tokens + self.output_tokens:
            raise ValueError(
                f"total_tokens ({self.total_tokens}) must equal input_tokens + output_tokens "
                f"({self.input_tokens} + {self.output_tokens})"
            )

    @classmethod
    def zero(cls, model: str) -> TokenUsage:
        return cls(input_tokens=0, output_tokens=0, total_tokens=0, percent_used=0.0, model=model)

    def to_dict(self) -> dict[str, Any]:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "totalTokens": self.total_tokens,
            "percentUsed": self.percent_used,
            "model": self.model,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, default_model: str = "default") -> TokenUsage:
        input_tokens = int(data.get("inputTokens", 0))
        output_tokens = int(data.get("outputTokens", 0))
        return cls(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            percent_used=float(data.get("percentUsed", 0.0)),
            model=str(data.get("model") or default_model),
        )


@dataclass(frozen=True)
class SessionCheckpoint:
    id: str
    session_id: str
    timestamp: str
    task_description: str
    completed_steps: list[str]
    current_step: str
    next_steps: list[str]
    messages: list[Message]
    token_usage: TokenUsage
    context_variables: dict[str, Any]
    continuation_prompt: str
    status: CheckpointStatus = CheckpointStatus.ACTIVE
    updated_at: str | None = None

    @property
    def created_at(self) -> str:
        return self.timestamp

    def to_dict(self) -> dict[str, Any]:
        """Persisted wire shape (camelCase field names)."""
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "taskDescription": self.task_description,
            "completedSteps": list(self.completed_steps),
            "currentStep": self.current_step,
            "nextSteps": list(self.next_steps),
            "messages": [m.to_dict() for m in self.messages],
            "tokenUsage": self.token_usage.to_dict(),
            "contextVariables": copy.deepcopy(self.context_variables),
            "continuationPrompt": self.continuation_prompt,
            "status": str(self.status),
            "createdAt": self.timestamp,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionCheckpoint:
        return cls(
            id=str(data["id"]),
            session_id=str(data["sessionId"]),
            timestamp=str(data.get("createdAt") or data.get("timestamp") or ""),
            task_description=str(data.get("taskDescription", "")),
            completed_steps=[str(s) for s in data.get("completedSteps") or []],
            current_step=str(data.get("currentStep") or ""),
            next_steps=[str(s) for s in data.get("nextSteps") or []],
            messages=[Message.from_dict(m) for m in data.get("messages") or []],
            token_usage=TokenUsage.from_dict(data.get("tokenUsage") or {}),
            context_variables=dict(data.get("contextVariables") or {}),
            continuation_prompt=str(data.get("continuationPrompt") or ""),
            status=CheckpointStatus(data.get("status", CheckpointStatus.ACTIVE)),
            updated_at=data.get("updatedAt"),
        )


@dataclass
class SessionState:
    """The live conversation. Owned by one SessionController."""

    session_id: str
    messages: list[Message]
    token_usage: TokenUsage

    @classmethod
    def fresh(cls, model: str) -> SessionState:
        return cls(session_id=str(uuid4()), messages=[], token_usage=TokenUsage.zero(model))

    @property
    def model(self) -> str:
        return self.token_usage.model
