from __future__ import annotations

from datetime import UTC, datetime, timedelta

from loguru import logger

from checkpoint_chat.memory.store import MemoryStore


def prune_checkpoints(
    store: MemoryStore,
    *,
    retention_days: int,
    max_checkpoints: int,
) -> int:
    """Delete old checkpoints that can no longer be resumed.

    Active checkpoints are never removed.
    """
    now = datetime.now(UTC)
    cutoff = (now - timedelta(days=max(1, retention_days))).isoformat(timespec="seconds")

    removed = store.execute(
        "DELETE FROM session_checkpoints WHERE status != 'active' AND updated_at < ?",
        (cutoff,),
    ).rowcount

    if max_checkpoints > 0:
        overflow = store.execute(
            """
            SELECT id
            FROM session_checkpoints
            WHERE status != 'active'
            ORDER BY created_at DESC, seq DESC
            LIMIT -1 OFFSET ?
            """,
            (max_checkpoints,),
        ).fetchall()
        if overflow:
            store.executemany(
                "DELETE FROM session_checkpoints WHERE id = ?",
                [(str(row["id"]),) for row in overflow],
            )
            removed += len(overflow)

    store.commit()
    if removed:
        logger.info(f"Pruned {removed} inactive checkpoint(s)")
    return removed
