from __future__ import annotations

import json
from typing import Any
from uuid import uuid4

from checkpoint_chat.memory.store import MemoryStore
from checkpoint_chat.models import SessionCheckpoint, utc_now

CHECKPOINT_ACTIVITY = "session_checkpoint"


class ActivityLog:
    """Append-only activity records kept apart from checkpoint data."""

    def __init__(self, store: MemoryStore):
        self._store = store

    def record(self, activity_type: str, payload: dict[str, Any], *, occurred_at: str | None = None) -> str:
        activity_id = str(uuid4())
        self._store.execute(
            """
            INSERT INTO activities (id, activity_type, occurred_at, payload_json)
            VALUES (?, ?, ?, ?)
            """,
            (activity_id, activity_type, occurred_at or utc_now(), json.dumps(payload, ensure_ascii=True)),
        )
        self._store.commit()
        return activity_id

    def record_checkpoint(self, checkpoint: SessionCheckpoint) -> str:
        return self.record(
            CHECKPOINT_ACTIVITY,
            {
                "checkpoint_id": checkpoint.id,
                "task": checkpoint.task_description,
                "token_percent": round(checkpoint.token_usage.percent_used * 100),
            },
            occurred_at=checkpoint.timestamp,
        )

    def list_recent(self, activity_type: str | None = None, *, limit: int = 50) -> list[dict[str, Any]]:
        if activity_type is None:
            rows = self._store.execute(
                "SELECT * FROM activities ORDER BY occurred_at DESC LIMIT ?",
                (max(1, limit),),
            ).fetchall()
        else:
            rows = self._store.execute(
                "SELECT * FROM activities WHERE activity_type = ? ORDER BY occurred_at DESC LIMIT ?",
                (activity_type, max(1, limit)),
            ).fetchall()
        return [
            {
                "id": row["id"],
                "activity_type": row["activity_type"],
                "occurred_at": row["occurred_at"],
                "payload": json.loads(row["payload_json"]),
            }
            for row in rows
        ]
