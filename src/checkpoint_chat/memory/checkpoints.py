from __future__ import annotations

import json
import sqlite3
from typing import Any

from loguru import logger

from checkpoint_chat.memory.store import MemoryStore
from checkpoint_chat.models import (
    CheckpointStatus,
    Message,
    SessionCheckpoint,
    TokenUsage,
    can_transition,
    utc_now,
)


class CheckpointNotFoundError(LookupError):
    def __init__(self, checkpoint_id: str):
        super().__init__(f"Checkpoint does not exist: {checkpoint_id}")
        self.checkpoint_id = checkpoint_id


class CheckpointStoreError(RuntimeError):
    """The backing database failed; distinct from a missing checkpoint."""


class InvalidCheckpointTransitionError(ValueError):
    def __init__(self, checkpoint_id: str, current: CheckpointStatus, target: CheckpointStatus):
        super().__init__(f"Checkpoint {checkpoint_id} cannot move from '{current}' to '{target}'")
        self.checkpoint_id = checkpoint_id
        self.current = current
        self.target = target


class CheckpointStore:
    """Durable checkpoint records with at most one active checkpoint per session."""

    def __init__(self, store: MemoryStore):
        self._store = store

    def get(self, checkpoint_id: str) -> SessionCheckpoint:
        row = self._fetch_one(
            "SELECT * FROM session_checkpoints WHERE id = ? LIMIT 1",
            (checkpoint_id,),
        )
        if row is None:
            raise CheckpointNotFoundError(checkpoint_id)
        return self._row_to_checkpoint(row)

    def get_active(self) -> SessionCheckpoint | None:
        row = self._fetch_one(
            """
            SELECT *
            FROM session_checkpoints
            WHERE status = 'active'
            ORDER BY created_at DESC, seq DESC
            LIMIT 1
            """,
        )
        if row is None:
            return None
        return self._row_to_checkpoint(row)

    def list(self, limit: int = 20) -> list[SessionCheckpoint]:
        try:
            rows = self._store.execute(
                """
                SELECT *
                FROM session_checkpoints
                ORDER BY created_at DESC, seq DESC
                LIMIT ?
                """,
                (max(1, limit),),
            ).fetchall()
        except sqlite3.Error as ex:
            raise CheckpointStoreError(f"Failed to list checkpoints: {ex}") from ex
        return [self._row_to_checkpoint(row) for row in rows]

    def insert(self, checkpoint: SessionCheckpoint) -> SessionCheckpoint:
        """Persist ``checkpoint`` as active, superseding the session's previous active one.

        The demotion and the insert share one transaction.
        """
        now = utc_now()
        try:
            with self._store.transaction():
                demoted = self._store.execute(
                    """
                    UPDATE session_checkpoints
                    SET status = 'superseded', updated_at = ?
                    WHERE session_id = ? AND status = 'active'
                    """,
                    (now, checkpoint.session_id),
                ).rowcount
                row = self._store.execute(
                    "SELECT COALESCE(MAX(seq), 0) AS max_seq FROM session_checkpoints",
                ).fetchone()
                self._store.execute(
                    """
                    INSERT INTO session_checkpoints (
                        id, session_id, task_description, completed_steps_json, current_step,
                        next_steps_json, messages_json, token_usage_json, context_variables_json,
                        continuation_prompt, status, created_at, updated_at, seq
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'active', ?, ?, ?)
                    """,
                    (
                        checkpoint.id,
                        checkpoint.session_id,
                        checkpoint.task_description,
                        json.dumps(list(checkpoint.completed_steps), ensure_ascii=True),
                        checkpoint.current_step,
                        json.dumps(list(checkpoint.next_steps), ensure_ascii=True),
                        json.dumps([m.to_dict() for m in checkpoint.messages], ensure_ascii=True),
                        json.dumps(checkpoint.token_usage.to_dict(), ensure_ascii=True),
                        json.dumps(checkpoint.context_variables, ensure_ascii=True, default=str),
                        checkpoint.continuation_prompt,
                        checkpoint.timestamp,
                        now,
                        int(row["max_seq"]) + 1,
                    ),
                )
        except sqlite3.Error as ex:
            raise CheckpointStoreError(f"Failed to save checkpoint {checkpoint.id}: {ex}") from ex

        if demoted:
            logger.info(f"Superseded {demoted} active checkpoint(s) for session {checkpoint.session_id}")
        logger.info(f"Saved checkpoint {checkpoint.id} for session {checkpoint.session_id}")
        return self.get(checkpoint.id)

    def update_status(self, checkpoint_id: str, status: CheckpointStatus | str) -> SessionCheckpoint:
        target = CheckpointStatus(status)
        now = utc_now()
        try:
            with self._store.transaction():
                row = self._store.execute(
                    "SELECT status FROM session_checkpoints WHERE id = ? LIMIT 1",
                    (checkpoint_id,),
                ).fetchone()
                if row is None:
                    raise CheckpointNotFoundError(checkpoint_id)
                current = CheckpointStatus(row["status"])
                if not can_transition(current, target):
                    raise InvalidCheckpointTransitionError(checkpoint_id, current, target)
                self._store.execute(
                    "UPDATE session_checkpoints SET status = ?, updated_at = ? WHERE id = ?",
                    (str(target), now, checkpoint_id),
                )
        except sqlite3.Error as ex:
            raise CheckpointStoreError(f"Failed to update checkpoint {checkpoint_id}: {ex}") from ex

        logger.info(f"Checkpoint {checkpoint_id}: {current} -> {target}")
        return self.get(checkpoint_id)

    def _fetch_one(self, query: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        try:
            return self._store.execute(query, params).fetchone()
        except sqlite3.Error as ex:
            raise CheckpointStoreError(f"Failed to read checkpoints: {ex}") from ex

    def _row_to_checkpoint(self, row: sqlite3.Row) -> SessionCheckpoint:
        return SessionCheckpoint(
            id=str(row["id"]),
            session_id=str(row["session_id"]),
            timestamp=str(row["created_at"]),
            task_description=str(row["task_description"]),
            completed_steps=[str(s) for s in json.loads(row["completed_steps_json"])],
            current_step=str(row["current_step"]),
            next_steps=[str(s) for s in json.loads(row["next_steps_json"])],
            messages=[Message.from_dict(m) for m in json.loads(row["messages_json"])],
            token_usage=TokenUsage.from_dict(json.loads(row["token_usage_json"])),
            context_variables=json.loads(row["context_variables_json"]),
            continuation_prompt=str(row["continuation_prompt"]),
            status=CheckpointStatus(row["status"]),
            updated_at=str(row["updated_at"]),
        )
