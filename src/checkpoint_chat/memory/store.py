from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any


class MemoryStore:
    def __init__(self, db_path: str):
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._initialize_schema()

    def close(self) -> None:
        self._conn.close()

    def execute(self, query: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        return self._conn.execute(query, params)

    def executemany(self, query: str, seq_of_params: list[tuple[Any, ...]]) -> sqlite3.Cursor:
        return self._conn.executemany(query, seq_of_params)

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        try:
            yield
        except BaseException:
            self._conn.rollback()
            raise
        else:
            self._conn.commit()

    def _initialize_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS session_checkpoints (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL,
                task_description TEXT NOT NULL,
                completed_steps_json TEXT NOT NULL DEFAULT '[]',
                current_step TEXT NOT NULL DEFAULT '',
                next_steps_json TEXT NOT NULL DEFAULT '[]',
                messages_json TEXT NOT NULL DEFAULT '[]',
                token_usage_json TEXT NOT NULL DEFAULT '{}',
                context_variables_json TEXT NOT NULL DEFAULT '{}',
                continuation_prompt TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'active'
                    CHECK (status IN ('active', 'completed', 'abandoned', 'resumed', 'superseded')),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                seq INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS activities (
                id TEXT PRIMARY KEY,
                activity_type TEXT NOT NULL,
                occurred_at TEXT NOT NULL,
                payload_json TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_checkpoints_status
                ON session_checkpoints(status);
            CREATE INDEX IF NOT EXISTS idx_checkpoints_session
                ON session_checkpoints(session_id);
            CREATE INDEX IF NOT EXISTS idx_checkpoints_created
                ON session_checkpoints(created_at DESC, seq DESC);
            CREATE INDEX IF NOT EXISTS idx_activities_type_occurred
                ON activities(activity_type, occurred_at);
            """
        )
        self._conn.commit()
